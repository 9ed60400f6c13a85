"""
API Layer — Edition Sequence Endpoints (Django REST Framework)

Thin controllers over the allocator use cases. Each view:

- validates input by building a typed event (MalformedEventError -> 400)
- delegates to exactly one use case
- maps domain exceptions to HTTP responses

Status mapping:

- StoreUnavailableError -> 503, so the order event source redelivers
- InvariantViolationError -> 500, already logged loudly by the allocator
- EditionSoldOut -> 422
- redelivered activations -> 200 "Request already processed."
"""

from django.db.models import F
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from editions.application.use_cases import (
    apply_events,
    on_order_line_activated,
    on_order_line_restored,
    on_order_line_retired,
    reconcile,
)
from editions.domain.events import (
    OrderLineActivated,
    OrderLineRestored,
    OrderLineRetired,
    REF_MAX_LENGTH,
    RETIRED_MANUAL,
    parse_order_payload,
)
from editions.domain.exceptions import (
    EditionSoldOut,
    InvariantViolationError,
    MalformedEventError,
    StoreUnavailableError,
)
from editions.models import AllocationRecord, AllocationState


def _record_payload(record):
    return {
        "id": record.id,
        "product_id": record.product_id,
        "order_ref": record.order_ref,
        "item_ref": record.item_ref,
        "state": record.state,
        "position": record.position,
        "total_capacity": record.total_capacity,
        "label": record.edition_label,
    }


def _store_error_response(exc):
    if isinstance(exc, InvariantViolationError):
        return Response(
            {"error": "Edition numbering is inconsistent; an operator must reconcile."},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    return Response(
        {"error": str(exc)},
        status=status.HTTP_503_SERVICE_UNAVAILABLE,
    )


class OrderWebhookView(APIView):
    """
    POST /api/editions/webhooks/orders/

    Accepts a Shopify order body (create, update or cancel topics alike) and
    applies one event per limited-edition line.
    """

    def post(self, request):
        try:
            events = parse_order_payload(request.data)
        except MalformedEventError as exc:
            return Response({"error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        try:
            results = apply_events(events)
        except (StoreUnavailableError, InvariantViolationError) as exc:
            return _store_error_response(exc)
        except EditionSoldOut as exc:
            return Response({"error": str(exc)}, status=status.HTTP_422_UNPROCESSABLE_ENTITY)

        return Response(
            {"order_ref": str(request.data.get("id")), "results": results},
            status=status.HTTP_200_OK,
        )


class ActivateLineView(APIView):
    """POST /api/editions/lines/activate/"""

    def post(self, request):
        try:
            event = OrderLineActivated(
                product_id=request.data.get("product_id"),
                order_ref=request.data.get("order_ref"),
                item_ref=request.data.get("item_ref"),
                capacity=request.data.get("capacity"),
            )
        except MalformedEventError as exc:
            return Response({"error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        try:
            record, created = on_order_line_activated(
                event.product_id, event.order_ref, event.item_ref, event.capacity
            )
        except EditionSoldOut as exc:
            return Response({"error": str(exc)}, status=status.HTTP_422_UNPROCESSABLE_ENTITY)
        except (StoreUnavailableError, InvariantViolationError) as exc:
            return _store_error_response(exc)

        if not created:
            return Response(
                {"message": "Request already processed.", "record": _record_payload(record)},
                status=status.HTTP_200_OK,
            )
        return Response(_record_payload(record), status=status.HTTP_201_CREATED)


class RetireLineView(APIView):
    """POST /api/editions/lines/retire/"""

    def post(self, request):
        try:
            event = OrderLineRetired(
                product_id=request.data.get("product_id"),
                order_ref=request.data.get("order_ref"),
                item_ref=request.data.get("item_ref"),
                reason=request.data.get("reason") or RETIRED_MANUAL,
            )
        except MalformedEventError as exc:
            return Response({"error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        try:
            record = on_order_line_retired(
                event.product_id, event.order_ref, event.item_ref, event.reason
            )
        except (StoreUnavailableError, InvariantViolationError) as exc:
            return _store_error_response(exc)

        if record is None:
            return Response({"message": "Nothing to retire."}, status=status.HTTP_200_OK)
        return Response(_record_payload(record), status=status.HTTP_200_OK)


class RestoreLineView(APIView):
    """POST /api/editions/lines/restore/"""

    def post(self, request):
        try:
            event = OrderLineRestored(
                product_id=request.data.get("product_id"),
                order_ref=request.data.get("order_ref"),
                item_ref=request.data.get("item_ref"),
            )
        except MalformedEventError as exc:
            return Response({"error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        try:
            record = on_order_line_restored(event.product_id, event.order_ref, event.item_ref)
        except (StoreUnavailableError, InvariantViolationError) as exc:
            return _store_error_response(exc)

        if record is None:
            return Response({"error": "Order line not found."}, status=status.HTTP_404_NOT_FOUND)
        return Response(_record_payload(record), status=status.HTTP_200_OK)


class ReconcileProductView(APIView):
    """POST /api/editions/products/<product_id>/reconcile/"""

    def post(self, request, product_id):
        if len(product_id) > REF_MAX_LENGTH:
            return Response(
                {"error": f"product_id is longer than {REF_MAX_LENGTH} characters"},
                status=status.HTTP_400_BAD_REQUEST,
            )

        try:
            assignments = reconcile(product_id)
        except (StoreUnavailableError, InvariantViolationError) as exc:
            return _store_error_response(exc)

        return Response(
            {
                "product_id": product_id,
                "positions": [
                    {"id": record_id, "position": position}
                    for record_id, position in assignments
                ],
            },
            status=status.HTTP_200_OK,
        )


class ProductEditionsView(APIView):
    """
    GET /api/editions/products/<product_id>/

    Live listing for certificate rendering. Positions may change after a
    retirement, so callers should not cache them.
    """

    def get(self, request, product_id):
        records = (
            AllocationRecord.objects
            .filter(product_id=product_id, state=AllocationState.ACTIVE)
            .order_by(F("position").asc(nulls_last=True), "created_at", "id")
        )
        editions = [_record_payload(record) for record in records]
        return Response(
            {"product_id": product_id, "active_count": len(editions), "editions": editions},
            status=status.HTTP_200_OK,
        )
