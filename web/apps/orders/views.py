"""HTTP views for the orders app.

Views are kept small: they validate requests (via Pydantic), map them to
domain values, delegate to the services obtained from ``providers`` and
turn the outcome, or a structured ``OrderError``, into a response.

Error mapping: request shape errors → 400; ``ValidationError`` → 422;
``NotFoundError`` → 404; ``ConflictError`` → 409; ``GatewayError`` → 503;
``PersistenceError`` → 500. The payment webhook is the exception: it
acknowledges everything except persistence failures with 200, so the
provider does not retry into a storm.

Idempotency: when an ``Idempotency-Key`` header is sent with a checkout,
the first request is processed and its response stored; retries with the
same payload replay it with ``Idempotent-Replay: true``. Reusing the key
with a different payload returns 409.
"""

import logging

from django.conf import settings
from django.core.paginator import Paginator
from django.db.models import Q
from pydantic import ValidationError as PydanticValidationError
from rest_framework import status
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import providers
from .checkout import CheckoutRequest
from .domain import Actor, Order, PaymentMethod
from .errors import (
    ConflictError,
    GatewayError,
    NotFoundError,
    OrderError,
    PersistenceError,
    ValidationError,
)
from .idempotency import finalize, get_or_create_idempotent, release
from .models import CustomerModel, OrderModel
from .repository import to_domain
from .schemas import CheckoutIn, GatewayCallbackIn, OrderReadDTO, StatusChangeIn

logger = logging.getLogger("orders.views")

ADMIN_PAGE_SIZE = 15

_STATUS_BY_ERROR = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (GatewayError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PersistenceError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def error_status(err: OrderError) -> int:
    for cls, code in _STATUS_BY_ERROR:
        if isinstance(err, cls):
            return code
    return status.HTTP_400_BAD_REQUEST


def error_response(err: OrderError) -> Response:
    return Response(err.as_dict(), status=error_status(err))


def bad_request(e: PydanticValidationError) -> Response:
    return Response({"detail": "INVALID_REQUEST", "message": str(e)}, status=status.HTTP_400_BAD_REQUEST)


def render_order(order: Order, watchdog=None) -> dict:
    """Snapshot for the API; transfer orders carry bank details and their deadline."""
    expires_at = None
    if order.payment_method == PaymentMethod.TRANSFER:
        expires_at = (watchdog or providers.get_watchdog()).expires_at(order)
    dto = OrderReadDTO.from_order(order, expires_at=expires_at, bank_details=settings.TRANSFER_BANK_DETAILS)
    return dto.model_dump(mode="json", exclude_none=True)


class OrdersPingView(APIView):
    """Liveness probe for the orders module."""

    def get(self, request):
        return Response({"ok": True})


class CheckoutView(APIView):
    """Create an order from a storefront cart.

    Responds 201 with ``{"order": <snapshot>, "redirect_url": ...}``;
    ``redirect_url`` is the hosted-checkout page for gateway orders and
    absent for transfer orders, whose snapshot carries the bank details.
    """

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "checkout"

    def post(self, request):
        idem_key = request.headers.get("Idempotency-Key")

        # 1) Pydantic validation
        try:
            dto = CheckoutIn.model_validate(request.data)
        except PydanticValidationError as e:
            return bad_request(e)

        # 2) Idempotency get-or-create
        rec = None
        if idem_key:
            try:
                existing, rec = get_or_create_idempotent(idem_key, request.data)
            except ValueError:
                return Response({"detail": "IDEMPOTENCY_CONFLICT"}, status=status.HTTP_409_CONFLICT)
            if existing:
                if not rec.response_status:
                    return Response({"detail": "IDEMPOTENCY_IN_PROGRESS"}, status=status.HTTP_409_CONFLICT)
                resp = Response(rec.response_body, status=rec.response_status)
                resp["Idempotent-Replay"] = "true"
                return resp

        # 3) Domain
        checkout = CheckoutRequest(
            lines=[line.to_domain() for line in dto.items],
            contact=dto.customer.to_domain(),
            shipping=dto.shipping.to_domain(),
            payment_method=PaymentMethod(dto.payment_method),
        )
        try:
            result = providers.get_checkout_service().place_order(checkout)
        except OrderError as e:
            if isinstance(e, (GatewayError, PersistenceError)):
                logger.error("checkout.failed", extra={"code": e.code, **e.data})
            body = e.as_dict()
            code = error_status(e)
            if rec:
                finalize(rec, code, body)
            return Response(body, status=code)
        except Exception:
            if rec:
                release(rec)
            raise

        # 4) Response
        body = {"order": render_order(result.order)}
        if result.session is not None:
            body["redirect_url"] = result.session.redirect_url
        if rec:
            finalize(rec, status.HTTP_201_CREATED, body, order_id=result.order.id)
        return Response(body, status=status.HTTP_201_CREATED)


class OrderDetailView(APIView):
    """Public order snapshot, addressed by the opaque order id."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid: str):
        try:
            order = providers.get_lifecycle().get(str(oid))
        except NotFoundError as e:
            return error_response(e)
        return Response(render_order(order), status=200)


class ExpiryCheckView(APIView):
    """Ask whether a transfer order's payment window has passed, cancelling it if so."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "expiry_check"

    def post(self, request, oid: str):
        watchdog = providers.get_watchdog()
        try:
            expired, order = watchdog.check(str(oid))
        except OrderError as e:
            return error_response(e)
        return Response({"expired": expired, "order": render_order(order, watchdog)}, status=200)


class ReportPaymentView(APIView):
    """Customer self-report that a bank transfer was sent.

    The window is checked under the order lock: a report arriving after
    it closed cancels the order instead and answers ``ORDER_EXPIRED``.
    """

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "expiry_check"

    def post(self, request, oid: str):
        watchdog = providers.get_watchdog()
        try:
            result = watchdog.report_payment(str(oid))
        except OrderError as e:
            return error_response(e)
        return Response({"changed": result.changed, "order": render_order(result.order, watchdog)}, status=200)


class OrderStatusView(APIView):
    """Admin status change."""

    permission_classes = [IsAdminUser]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_admin"

    def put(self, request, oid: str):
        try:
            dto = StatusChangeIn.model_validate(request.data)
        except PydanticValidationError as e:
            return bad_request(e)
        try:
            result = providers.get_lifecycle().transition(str(oid), dto.status, Actor.ADMIN)
        except OrderError as e:
            return error_response(e)
        return Response(
            {"changed": result.changed, "previous": result.previous.value, "order": render_order(result.order)},
            status=200,
        )


def _page(request, qs) -> dict:
    try:
        page = int(request.GET.get("page", 1))
    except ValueError:
        page = 1
    p = Paginator(qs.prefetch_related("lines"), ADMIN_PAGE_SIZE)
    page_obj = p.get_page(page)
    watchdog = providers.get_watchdog()
    return {
        "count": p.count,
        "page": page_obj.number,
        "num_pages": p.num_pages,
        "page_size": ADMIN_PAGE_SIZE,
        "results": [render_order(to_domain(o), watchdog) for o in page_obj.object_list],
    }


class OrdersCollectionView(APIView):
    """Admin order list: ``?status=`` filter, ``?q=`` search, ``?page=``."""

    permission_classes = [IsAdminUser]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_admin"

    def get(self, request):
        qs = OrderModel.objects.order_by("-created_at")
        st = request.GET.get("status")
        if st:
            qs = qs.filter(status=st)
        q = (request.GET.get("q") or "").strip()
        if q:
            cond = Q(customer_name__icontains=q) | Q(customer_email__icontains=q)
            if q.lstrip("#").isdigit():
                cond |= Q(internal_id=int(q.lstrip("#")))
            qs = qs.filter(cond)
        return Response(_page(request, qs), status=200)


class CustomerOrdersView(APIView):
    """Admin view of one customer's aggregates and orders."""

    permission_classes = [IsAdminUser]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_admin"

    def get(self, request, customer_id: int):
        try:
            customer = CustomerModel.objects.get(pk=customer_id)
        except CustomerModel.DoesNotExist:
            return error_response(NotFoundError("NOT_FOUND", "Customer not found.", customer_id=customer_id))
        body = _page(request, customer.orders.order_by("-created_at"))
        body["customer"] = {
            "id": customer.id,
            "name": customer.name,
            "email": customer.email,
            "phone": customer.phone,
            "order_count": customer.order_count,
            "total_spent": customer.total_spent,
        }
        return Response(body, status=200)


class GatewayWebhookView(APIView):
    """Payment provider callback.

    The body only says which payment changed; its status is re-fetched
    from the provider. Provider outages and transitions the order cannot
    take are logged and acknowledged; only a failed write answers 500 so
    the provider delivers the callback again.
    """

    authentication_classes = []
    permission_classes = []

    def _payload(self, request) -> dict:
        data = request.data if isinstance(request.data, dict) else {}
        try:
            payload = GatewayCallbackIn.model_validate(data).model_dump()
        except PydanticValidationError:
            payload = {}
        if not payload.get("data"):
            # some deliveries only use the query string: ?type=payment&data.id=123
            qp = request.query_params
            pid = qp.get("data.id") or qp.get("id")
            if pid:
                payload = {"type": qp.get("type") or qp.get("topic"), "data": {"id": pid}}
        return payload

    def post(self, request):
        payload = self._payload(request)
        reconciler = providers.get_reconciler()
        try:
            outcome = reconciler.handle_callback(payload)
        except GatewayError as e:
            logger.error("payment.callback.gateway_error", extra={"code": e.code, "payload": payload, **e.data})
            return Response({"received": True, "action": "gateway_error"}, status=200)
        except ConflictError as e:
            logger.error("payment.callback.rejected_transition", extra={"code": e.code, **e.data})
            return Response({"received": True, "action": "conflict", "detail": e.code}, status=200)
        except PersistenceError as e:
            logger.error("payment.callback.persistence_error", extra={"code": e.code, "payload": payload, **e.data})
            return error_response(e)
        return Response({"received": True, "action": outcome.action}, status=200)
