"""
JSON API for the POS terminal.
The terminal lives in the Django session; every view loads it, applies one
operation and saves it back.
"""
import logging

from django.conf import settings
from django.core.cache import cache
from rest_framework import status
from rest_framework.permissions import SAFE_METHODS, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.pos.exceptions import (
    AuthExpiredError,
    CatalogError,
    CheckoutInProgressError,
    CheckoutStateError,
    PosError,
    StockConflictError,
    StockLimitError,
    SubmissionError,
    ValidationError,
)
from apps.pos.money import quantize
from apps.pos.services import CredentialProvider, get_backend_services
from apps.pos.session import PosTerminal
from apps.pos.tender import resolve_cash
from .authentication import BackendTokenAuthentication
from .serializers import (
    AddItemSerializer,
    CheckoutSerializer,
    DiscountSerializer,
    RetrySerializer,
    SelectStoreSerializer,
    TenderSerializer,
    UpdateQuantitySerializer,
)

logger = logging.getLogger(__name__)

SESSION_KEY = 'pos_terminal'

# Most specific first.
ERROR_STATUS = [
    (StockLimitError, status.HTTP_409_CONFLICT),
    (CheckoutInProgressError, status.HTTP_409_CONFLICT),
    (CheckoutStateError, status.HTTP_409_CONFLICT),
    (StockConflictError, status.HTTP_409_CONFLICT),
    (AuthExpiredError, status.HTTP_401_UNAUTHORIZED),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (SubmissionError, status.HTTP_502_BAD_GATEWAY),
    (CatalogError, status.HTTP_502_BAD_GATEWAY),
]


def status_for_error(exc):
    for error_class, http_status in ERROR_STATUS:
        if isinstance(exc, error_class):
            return http_status
    return status.HTTP_400_BAD_REQUEST


def invalid_input(serializer):
    return Response({
        'error': 'Invalid input',
        'code': ValidationError.code,
        'details': serializer.errors,
    }, status=status.HTTP_400_BAD_REQUEST)


def terminal_payload(terminal):
    """Cart, totals and checkout state as returned by every cart endpoint."""
    orchestrator = terminal.orchestrator
    last_error = orchestrator.last_error
    return {
        'store_id': terminal.store_id,
        'items': [line.to_dict() for line in terminal.cart.lines],
        'totals': terminal.totals().to_dict(),
        'checkout': {
            'state': orchestrator.state,
            'requires_reauth': orchestrator.requires_reauth,
            'last_error': last_error.to_dict() if isinstance(last_error, PosError) else None,
            'snapshot': orchestrator.snapshot.to_dict() if orchestrator.snapshot else None,
        },
    }


def checkout_lock_key(request):
    """Cache key of the checkout lock for the caller's session; None without a session."""
    session_key = request.session.session_key
    if not session_key:
        return None
    return f"pos:checkout:{session_key}"


def checkout_in_progress(request):
    lock_key = checkout_lock_key(request)
    return lock_key is not None and cache.get(lock_key) is not None


class TerminalAPIView(APIView):
    """
    Base view: loads the caller's terminal from the session and saves it after
    the request.

    While a checkout request holds the session's checkout lock, every other
    unsafe request is rejected with CHECKOUT_IN_PROGRESS, and no other request
    writes its copy of the terminal back to the session.
    """
    authentication_classes = [BackendTokenAuthentication]
    permission_classes = [IsAuthenticated]

    # Unsafe methods that never change the terminal (e.g. previews)
    allowed_during_checkout = False

    _terminal = None
    _owns_checkout_lock = False

    @property
    def terminal(self):
        if self._terminal is None:
            credentials = CredentialProvider(self.request.auth)
            catalog, sales = get_backend_services(credentials)
            self._terminal = PosTerminal.from_dict(
                self.request.session.get(SESSION_KEY),
                catalog,
                sales,
                credentials=credentials,
            )
        return self._terminal

    def initial(self, request, *args, **kwargs):
        super().initial(request, *args, **kwargs)
        if request.method in SAFE_METHODS or self.allowed_during_checkout:
            return
        if checkout_in_progress(request):
            logger.warning(
                f"Rejected {request.method} {request.path} while a checkout is submitting "
                f"for session {request.session.session_key[:8]}"
            )
            raise CheckoutInProgressError("A sale is being submitted; try again when it completes")

    def handle_exception(self, exc):
        if isinstance(exc, PosError):
            return Response(exc.to_dict(), status=status_for_error(exc))
        try:
            return super().handle_exception(exc)
        except Exception:
            # finalize_response is skipped for uncaught errors
            self.release_checkout_lock(self.request)
            raise

    def acquire_checkout_lock(self, request):
        if not request.session.session_key:
            request.session.create()
        lock_timeout = getattr(settings, 'POS_CHECKOUT_LOCK_TIMEOUT', 120)
        if not cache.add(checkout_lock_key(request), 1, lock_timeout):
            logger.warning(f"Rejected concurrent checkout for session {request.session.session_key[:8]}")
            raise CheckoutInProgressError("A sale is already being submitted")
        self._owns_checkout_lock = True

    def release_checkout_lock(self, request):
        if self._owns_checkout_lock:
            cache.delete(checkout_lock_key(request))
            self._owns_checkout_lock = False

    def finalize_response(self, request, response, *args, **kwargs):
        if self._terminal is not None and (self._owns_checkout_lock or not checkout_in_progress(request)):
            request.session[SESSION_KEY] = self._terminal.to_dict()
        if self._owns_checkout_lock:
            # The outcome must be in the session before the lock is released.
            request.session.save()
            self.release_checkout_lock(request)
        return super().finalize_response(request, response, *args, **kwargs)


class CartView(TerminalAPIView):
    """GET the cart; DELETE empties it."""

    def get(self, request):
        return Response(terminal_payload(self.terminal))

    def delete(self, request):
        self.terminal.clear()
        return Response(terminal_payload(self.terminal))


class SelectStoreView(TerminalAPIView):

    def post(self, request):
        serializer = SelectStoreSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_input(serializer)

        products = self.terminal.select_store(
            serializer.validated_data['store_id'],
            serializer.validated_data['category_id'],
        )
        payload = terminal_payload(self.terminal)
        payload['products'] = [p.to_dict() for p in products]
        return Response(payload)


class CartItemsView(TerminalAPIView):

    def post(self, request):
        serializer = AddItemSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_input(serializer)

        self.terminal.add_item(serializer.validated_data['product_id'])
        return Response(terminal_payload(self.terminal), status=status.HTTP_201_CREATED)


class CartItemDetailView(TerminalAPIView):

    def patch(self, request, product_id):
        serializer = UpdateQuantitySerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_input(serializer)

        self.terminal.update_quantity(product_id, serializer.validated_data['quantity'])
        return Response(terminal_payload(self.terminal))

    def delete(self, request, product_id):
        self.terminal.remove_item(product_id)
        return Response(terminal_payload(self.terminal))


class DiscountView(TerminalAPIView):

    def post(self, request):
        serializer = DiscountSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_input(serializer)

        self.terminal.apply_discount(
            serializer.validated_data['type'],
            serializer.validated_data['value'],
        )
        return Response(terminal_payload(self.terminal))

    def delete(self, request):
        self.terminal.remove_discount()
        return Response(terminal_payload(self.terminal))


class TenderView(TerminalAPIView):
    """Preview change due for a cash amount against the current total."""
    allowed_during_checkout = True

    def post(self, request):
        serializer = TenderSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_input(serializer)

        snapshot = self.terminal.orchestrator.snapshot
        total = snapshot.total if snapshot else self.terminal.totals().total
        result = resolve_cash(total, serializer.validated_data['tendered'])
        return Response(result.to_dict())


class CheckoutView(TerminalAPIView):
    """
    Submit the cart to the sales service.

    The session's checkout lock is held from before the submission until the
    outcome is saved, so no other request can submit or edit this terminal
    in between.
    """

    def post(self, request):
        serializer = CheckoutSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_input(serializer)

        selection = serializer.to_selection()

        self.acquire_checkout_lock(request)
        result = self.terminal.checkout(selection, recapture=serializer.validated_data['recapture'])

        tender = self.terminal.orchestrator.tender
        payload = terminal_payload(self.terminal)
        payload.update({
            'success': True,
            'receipt_number': result.receipt_number,
            'sale': result.to_dict(),
            'change': str(tender.change) if tender else str(quantize(0)),
        })
        return Response(payload, status=status.HTTP_201_CREATED)


class CheckoutRetryView(TerminalAPIView):

    def post(self, request):
        serializer = RetrySerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_input(serializer)

        self.terminal.retry_checkout(recapture=serializer.validated_data['recapture'])
        return Response(terminal_payload(self.terminal))


class CheckoutCancelView(TerminalAPIView):

    def post(self, request):
        self.terminal.cancel_checkout()
        return Response(terminal_payload(self.terminal))


class ProductListView(TerminalAPIView):
    """Catalog listing for the active store; `q` searches, `category_id` filters."""

    def get(self, request):
        query = request.query_params.get('q', '')
        category_id = request.query_params.get('category_id')

        if query:
            products = self.terminal.search(query)
        else:
            products = self.terminal.refresh_stock(category_id)

        return Response({'products': [p.to_dict() for p in products if p is not None]})


class StoreListView(TerminalAPIView):

    def get(self, request):
        return Response({
            'stores': self.terminal.catalog_service.list_stores(),
            'selected_store': self.terminal.store_id,
        })


class TodayStatsView(TerminalAPIView):

    def get(self, request):
        summary = self.terminal.today_summary()
        return Response({
            'sales': summary['sales'],
            'total': str(quantize(summary['total'])),
            'items': summary['items'],
        })


class CategoryListView(TerminalAPIView):
    """Categories for the product filter; pass an `id` as `category_id` to `products/`."""

    def get(self, request):
        return Response({
            'categories': self.terminal.catalog_service.list_categories(),
            'selected_category': self.terminal.category_id,
        })
