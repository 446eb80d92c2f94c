"""
Masking of customer and vendor personal data before it reaches the logs.
"""
import re

_DIGITS = re.compile(r"\D")
_UUID = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.I)

# Keys whose string values are personal data
PII_FIELDS = {
    "email", "phone", "phone_number", "to", "name", "account_name",
    "store_name", "customer_name", "street", "line1", "line2", "user_id", "customer_id",
}
# Address keys left readable
ADDRESS_VISIBLE = {"city", "region", "country"}


def mask_email(email: str) -> str:
    if "@" not in email:
        return email
    local, domain = email.split("@", 1)
    return f"{local[:1]}***@{domain}"


def mask_phone(phone: str) -> str:
    """Keep the country code and the last two digits of a mobile money number."""
    digits = _DIGITS.sub("", phone or "")
    if len(digits) <= 5:
        return "*" * len(digits)
    return digits[:3] + "*" * (len(digits) - 5) + digits[-2:]


def mask_text(value: str) -> str:
    if len(value) <= 2:
        return "**"
    return value[0] + "*" * (len(value) - 2) + value[-1]


def mask_identifier(value: str) -> str:
    """Shorten a UUID to its first block; other identifiers pass through."""
    if _UUID.match(value):
        return value[:8] + "-****"
    return value


def mask_address(address: dict) -> dict:
    return {
        key: value if key in ADDRESS_VISIBLE or not isinstance(value, str) else mask_text(value)
        for key, value in address.items()
    }


def mask_value(key: str, value: str) -> str:
    if "@" in value:
        return mask_email(value)
    if key in ("phone", "phone_number", "to") or re.fullmatch(r"[\d\s+\-()]{6,}", value):
        return mask_phone(value)
    if key.endswith("_id"):
        return mask_identifier(value)
    return mask_text(value)


def mask_pii_in_dict(data: dict) -> dict:
    """Copy of data with personal fields masked, recursing into nested payloads."""
    masked = {}
    for key, value in data.items():
        key_lower = key.lower()
        if isinstance(value, dict):
            if key_lower.endswith("address"):
                masked[key] = mask_address(value)
            else:
                masked[key] = mask_pii_in_dict(value)
        elif isinstance(value, list):
            masked[key] = [mask_pii_in_dict(item) if isinstance(item, dict) else item for item in value]
        elif key_lower in PII_FIELDS and isinstance(value, str) and value:
            masked[key] = mask_value(key_lower, value)
        else:
            masked[key] = value
    return masked
