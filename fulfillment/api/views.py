"""
GraphQL view with idempotency and logging support.
"""
import hashlib
import json
import logging
from uuid import uuid4

from ariadne import graphql_sync
from django.conf import settings
from django.db import IntegrityError, transaction
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from fulfillment.api.middleware import ErrorHandler
from fulfillment.api.schema import format_fulfillment_error, schema
from fulfillment.infra.models import IdempotencyKey
from fulfillment.infra.pii_masker import mask_pii_in_dict

logger = logging.getLogger(__name__)

# Mutation field -> IdempotencyKey.operation
OPERATIONS = {
    "placeOrder": "PLACE_ORDER",
    "updateOrderItemStatus": "UPDATE_ITEM_STATUS",
    "refundOrder": "REFUND_ORDER",
    "runRefundSweep": "RUN_REFUND_SWEEP",
}


class FulfillmentGraphQLView:
    """GraphQL view with idempotency and structured logging."""

    def dispatch(self, request, *args, **kwargs):
        """Handle GraphQL request with idempotency."""
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        idempotency_key = request.headers.get("Idempotency-Key")
        user_id = request.headers.get("X-User-ID") or ""

        log_data = {
            "request_id": request_id,
            "user_id": user_id or None,
            "idempotency_key": idempotency_key[:8] + "..." if idempotency_key else None,
            "operation": "graphql",
        }
        logger.info("graphql_request", extra=mask_pii_in_dict(log_data))

        try:
            data = self._parse_body(request)
            if data is None:
                response = self._process_graphql_request(request, None)
            elif idempotency_key and self._is_mutation(data.get("query") or ""):
                response = self._process_idempotent(request, data, idempotency_key, user_id, request_id)
            else:
                response = self._process_graphql_request(request, data)
        except Exception as e:
            response = ErrorHandler.handle_error(e)
            logger.error(
                "graphql_error",
                extra={
                    "request_id": request_id,
                    "user_id": user_id,
                    "error": str(e),
                },
            )

        logger.info(
            "graphql_response",
            extra={
                "request_id": request_id,
                "status": response.status_code,
            },
        )
        return response

    def _process_idempotent(self, request, data: dict, idempotency_key: str, user_id: str, request_id: str):
        query = data.get("query") or ""
        variables = data.get("variables") or {}
        operation = self._extract_operation(query, data.get("operationName") or "")
        request_hash = self._create_request_hash(query, variables)

        existing = IdempotencyKey.objects.filter(
            key=idempotency_key,
            user_id=user_id,
            operation=operation,
        ).first()

        if existing:
            if existing.request_hash == request_hash:
                logger.info(
                    "idempotent_request_cached",
                    extra={
                        "request_id": request_id,
                        "idempotency_key": idempotency_key,
                        "operation": operation,
                    },
                )
                return JsonResponse(existing.response_payload, safe=False)

            logger.warning(
                "idempotency_key_conflict",
                extra={
                    "request_id": request_id,
                    "idempotency_key": idempotency_key,
                },
            )
            return ErrorHandler.error_response(
                "DUPLICATE_REQUEST",
                "Idempotency key already used with different request",
            )

        response = self._process_graphql_request(request, data)

        # Only successful responses are replayed
        if response.status_code == 200:
            try:
                with transaction.atomic():
                    IdempotencyKey.objects.create(
                        key=idempotency_key,
                        user_id=user_id,
                        operation=operation,
                        request_hash=request_hash,
                        response_payload=json.loads(response.content),
                    )
            except IntegrityError as e:
                logger.error(
                    "failed_to_save_idempotency",
                    extra={
                        "request_id": request_id,
                        "error": str(e),
                    },
                )
        return response

    def _parse_body(self, request) -> dict | None:
        if request.method != "POST":
            return None
        try:
            data = json.loads(request.body)
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}

    def _is_mutation(self, query: str) -> bool:
        return query.lstrip().lower().startswith("mutation")

    def _create_request_hash(self, query: str, variables: dict) -> str:
        """Create hash of request for deduplication."""
        content = json.dumps({"query": query, "variables": variables}, sort_keys=True, default=str)
        return hashlib.sha256(content.encode()).hexdigest()

    def _extract_operation(self, query: str, operation_name: str) -> str:
        """Map the mutation in the request to an operation type."""
        for field_name, operation in OPERATIONS.items():
            if field_name in operation_name or field_name in query:
                return operation
        return "UNKNOWN"

    def _process_graphql_request(self, request, data: dict | None):
        if data is None:
            return JsonResponse({"message": "GraphQL endpoint. Use POST for queries."})
        if not data.get("query"):
            return ErrorHandler.error_response("VALIDATION_ERROR", "Request body must be JSON with a query")

        success, result = graphql_sync(
            schema,
            data,
            context_value={"request": request},
            error_formatter=format_fulfillment_error,
            debug=settings.DEBUG,
        )

        status_code = 200 if success else 400
        return JsonResponse(result, status=status_code)


@csrf_exempt
@require_http_methods(["GET", "POST"])
def graphql_view(request):
    """GraphQL endpoint."""
    view = FulfillmentGraphQLView()
    return view.dispatch(request)
