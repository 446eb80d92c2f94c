"""
Administrative HTTP actions.
"""
import logging

from django.http import JsonResponse
from django.utils.crypto import constant_time_compare
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from fulfillment.conf import FulfillmentSettings
from fulfillment.domain.exceptions import Forbidden
from fulfillment.services.refunds import RefundReconciliationJob

logger = logging.getLogger(__name__)


def check_ops_token(request) -> None:
    """Raise Forbidden unless the X-Ops-Token header matches OPS_TOKEN (when one is set)."""
    expected = FulfillmentSettings.load().ops_token
    if not expected:
        return
    supplied = request.headers.get("X-Ops-Token") or ""
    if not constant_time_compare(supplied, expected):
        raise Forbidden("Invalid ops token")


def check_admin(request) -> str:
    """
    Return the acting admin for a manual action, or raise Forbidden.

    The caller must be listed in ADMIN_USER_IDS, or present the ops token
    when one is configured.
    """
    config = FulfillmentSettings.load()
    user_id = request.headers.get("X-User-ID") or ""
    if not user_id:
        raise Forbidden("X-User-ID header is required")
    if user_id in config.admin_user_ids:
        return user_id
    supplied = request.headers.get("X-Ops-Token") or ""
    if config.ops_token and constant_time_compare(supplied, config.ops_token):
        return user_id
    logger.warning("admin_action_denied", extra={"user_id": user_id})
    raise Forbidden("Only admins can perform this action")


@csrf_exempt
@require_http_methods(["POST"])
def refund_sweep_view(request):
    """Run the refund sweep now."""
    try:
        check_ops_token(request)
    except Forbidden as e:
        return JsonResponse({"success": False, "message": e.message}, status=403)

    try:
        report = RefundReconciliationJob().sweep()
    except Exception as e:
        logger.error("refund_sweep_trigger_failed", extra={"error": str(e)}, exc_info=True)
        return JsonResponse(
            {"success": False, "message": "Refund check failed", "error": str(e)},
            status=500,
        )

    message = "Refund check already running" if report.skipped else "Refund check completed"
    return JsonResponse({"success": True, "message": message, "data": report.to_dict()})
