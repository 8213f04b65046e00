"""
Tests for the checkout state machine.
"""
from decimal import Decimal

import pytest

from apps.pos import checkout as states
from apps.pos.checkout import CheckoutOrchestrator, CheckoutSnapshot, PaymentSelection
from apps.pos.discounts import FIXED, PERCENTAGE
from apps.pos.exceptions import (
    AuthExpiredError,
    CheckoutInProgressError,
    CheckoutStateError,
    StockConflictError,
    StockLimitError,
    SubmissionError,
    ValidationError,
)
from apps.pos.services.auth import CredentialProvider


@pytest.fixture
def orchestrator(cart_with_beans, sales_service, credentials):
    cart_with_beans.apply_discount(PERCENTAGE, 10)
    return CheckoutOrchestrator(cart_with_beans, sales_service, store_id='store-1', credentials=credentials)


def ready_for_payment(orchestrator):
    orchestrator.review()
    orchestrator.begin_checkout()
    return orchestrator


def cash(amount):
    return PaymentSelection('cash', tendered_amount=amount)


class TestPaymentSelection:

    def test_cash_requires_tendered_amount(self):
        with pytest.raises(ValidationError):
            PaymentSelection('cash')

    def test_unknown_method_is_rejected(self):
        with pytest.raises(ValidationError):
            PaymentSelection('cheque')

    def test_card_needs_no_tender(self):
        selection = PaymentSelection('card', customer={'name': ' Ama ', 'phone': None})
        assert selection.tendered_amount is None
        assert selection.customer == {'name': 'Ama', 'phone': '', 'notes': ''}


class TestTransitions:

    def test_review_requires_items(self, cart, sales_service):
        orchestrator = CheckoutOrchestrator(cart, sales_service)
        with pytest.raises(ValidationError):
            orchestrator.review()
        assert orchestrator.state == states.IDLE

    def test_review_returns_totals(self, orchestrator):
        totals = orchestrator.review()

        assert orchestrator.state == states.REVIEWING
        assert totals.total == Decimal('27.00')

    def test_begin_checkout_freezes_snapshot(self, orchestrator, ledger):
        ready_for_payment(orchestrator)
        orchestrator.cart.add_item(ledger.get('p-2'))

        snapshot = orchestrator.snapshot
        assert orchestrator.state == states.AWAITING_PAYMENT
        assert snapshot.subtotal == Decimal('30.00')
        assert snapshot.discount_amount == Decimal('3.00')
        assert snapshot.total == Decimal('27.00')
        assert len(snapshot.lines) == 1

    def test_begin_checkout_revalidates_stale_discount(self, cart_with_beans, sales_service):
        cart_with_beans.apply_discount(FIXED, 25)
        cart_with_beans.update_quantity('p-1', 2)
        orchestrator = CheckoutOrchestrator(cart_with_beans, sales_service)
        orchestrator.review()

        with pytest.raises(ValidationError):
            orchestrator.begin_checkout()
        assert orchestrator.state == states.REVIEWING

    def test_submit_before_checkout_is_rejected(self, orchestrator, sales_service):
        with pytest.raises(CheckoutStateError):
            orchestrator.submit(cash(50))
        assert sales_service.payloads == []

    def test_history_records_transitions(self, orchestrator):
        ready_for_payment(orchestrator)
        orchestrator.submit(cash(30))

        assert orchestrator.history == [
            (states.IDLE, states.REVIEWING),
            (states.REVIEWING, states.AWAITING_PAYMENT),
            (states.AWAITING_PAYMENT, states.SUBMITTING),
            (states.SUBMITTING, states.COMPLETED),
        ]


class TestSubmit:

    def test_cash_checkout_completes_and_clears_cart(self, orchestrator, sales_service):
        ready_for_payment(orchestrator)

        result = orchestrator.submit(cash('30.00'))

        assert orchestrator.state == states.COMPLETED
        assert result.receipt_number == 'R-0001'
        assert orchestrator.tender.change == Decimal('3.00')
        assert orchestrator.tender.sufficient
        assert orchestrator.cart.is_empty()
        assert orchestrator.cart.discount is None
        assert orchestrator.last_result is result

    def test_payload_matches_snapshot(self, orchestrator, sales_service):
        ready_for_payment(orchestrator)
        orchestrator.submit(PaymentSelection('card', customer={'name': 'Kofi'}))

        payload = sales_service.payloads[0]
        assert payload == {
            'store_id': 'store-1',
            'line_items': [{
                'product_id': 'p-1',
                'quantity': 3,
                'unit_price': '10.00',
                'line_discount_amount': '0.00',
            }],
            'payment_method': 'card',
            'subtotal': '30.00',
            'discount_amount': '3.00',
            'discount_type': 'percentage',
            'total_amount': '27.00',
            'customer': {'name': 'Kofi', 'phone': '', 'notes': ''},
        }

    def test_insufficient_cash_blocks_without_network(self, orchestrator, sales_service):
        ready_for_payment(orchestrator)

        with pytest.raises(ValidationError):
            orchestrator.submit(cash('26.99'))

        assert orchestrator.state == states.AWAITING_PAYMENT
        assert sales_service.payloads == []

    def test_non_cash_skips_tender_check(self, orchestrator):
        ready_for_payment(orchestrator)
        orchestrator.submit(PaymentSelection('e_wallet'))
        assert orchestrator.tender is None
        assert orchestrator.state == states.COMPLETED

    def test_second_submission_while_submitting_is_rejected(self, orchestrator, sales_service):
        ready_for_payment(orchestrator)
        rejected = []

        def double_click(payload):
            try:
                orchestrator.submit(cash('30.00'))
            except CheckoutInProgressError as e:
                rejected.append(e)

        sales_service.on_submit = double_click
        orchestrator.submit(cash('30.00'))

        assert len(rejected) == 1
        assert len(sales_service.payloads) == 1
        assert orchestrator.state == states.COMPLETED

    def test_cart_edits_blocked_while_submitting(self, orchestrator, sales_service):
        ready_for_payment(orchestrator)
        blocked = []

        def edit_cart(payload):
            try:
                orchestrator.ensure_cart_editable()
            except CheckoutInProgressError:
                blocked.append(True)

        sales_service.on_submit = edit_cart
        orchestrator.submit(cash('27.00'))
        assert blocked == [True]


class TestFailures:

    def test_stock_conflict_preserves_everything(self, orchestrator, sales_service):
        ready_for_payment(orchestrator)
        cart_before = orchestrator.cart.to_dict()
        snapshot_before = orchestrator.snapshot.to_dict()
        sales_service.error = StockConflictError('Insufficient stock for Espresso Beans 1kg')
        selection = cash('30.00')

        with pytest.raises(StockConflictError):
            orchestrator.submit(selection)

        assert orchestrator.state == states.FAILED
        assert orchestrator.cart.to_dict() == cart_before
        assert orchestrator.snapshot.to_dict() == snapshot_before
        assert orchestrator.selection is selection
        assert isinstance(orchestrator.last_error, StockConflictError)

    def test_retry_after_network_error_reuses_selection(self, orchestrator, sales_service):
        ready_for_payment(orchestrator)
        sales_service.error = SubmissionError('Network error')

        with pytest.raises(SubmissionError):
            orchestrator.submit(cash('30.00'))

        orchestrator.retry()
        assert orchestrator.state == states.AWAITING_PAYMENT
        result = orchestrator.submit()

        assert result.total == Decimal('27.00')
        assert sales_service.payloads[0] == sales_service.payloads[1]

    def test_retry_with_recapture_uses_current_cart(self, orchestrator, sales_service):
        ready_for_payment(orchestrator)
        sales_service.error = StockConflictError('stock moved')
        with pytest.raises(StockConflictError):
            orchestrator.submit(cash('30.00'))

        orchestrator.cart.update_quantity('p-1', 2)
        snapshot = orchestrator.retry(recapture=True)

        assert snapshot.total == Decimal('18.00')
        orchestrator.submit()
        assert sales_service.payloads[-1]['line_items'][0]['quantity'] == 2

    def test_auth_expired_requires_new_credential(self, cart_with_beans, sales_service):
        credentials = CredentialProvider('old-token')
        orchestrator = CheckoutOrchestrator(cart_with_beans, sales_service, credentials=credentials)
        ready_for_payment(orchestrator)

        def expire(payload):
            credentials.mark_expired()

        sales_service.on_submit = expire
        sales_service.error = AuthExpiredError('Session expired')

        with pytest.raises(AuthExpiredError):
            orchestrator.submit(PaymentSelection('card'))

        assert orchestrator.state == states.FAILED
        assert orchestrator.requires_reauth
        with pytest.raises(AuthExpiredError):
            orchestrator.retry()

        sales_service.on_submit = None
        credentials.update('new-token')
        orchestrator.retry()
        orchestrator.submit()
        assert orchestrator.state == states.COMPLETED

    def test_rejected_token_stays_blocked_after_reload(self, cart_with_beans, sales_service):
        orchestrator = CheckoutOrchestrator(
            cart_with_beans, sales_service, credentials=CredentialProvider('old-token')
        )
        ready_for_payment(orchestrator)
        sales_service.error = AuthExpiredError('Session expired')
        with pytest.raises(AuthExpiredError):
            orchestrator.submit(PaymentSelection('card'))

        same_token = CheckoutOrchestrator.from_dict(
            orchestrator.to_dict(), cart_with_beans, sales_service, CredentialProvider('old-token')
        )
        with pytest.raises(AuthExpiredError):
            same_token.retry()
        assert same_token.state == states.FAILED

        new_token = CheckoutOrchestrator.from_dict(
            orchestrator.to_dict(), cart_with_beans, sales_service, CredentialProvider('new-token')
        )
        new_token.retry()
        assert new_token.state == states.AWAITING_PAYMENT
        assert not new_token.requires_reauth

    def test_recapture_rejects_quantities_above_resynced_stock(self, orchestrator, sales_service):
        ready_for_payment(orchestrator)
        sales_service.error = StockConflictError('stock moved')
        with pytest.raises(StockConflictError):
            orchestrator.submit(cash('30.00'))

        orchestrator.cart.sync_stock([
            {'id': 'p-1', 'name': 'Espresso Beans 1kg', 'default_price': '10.00', 'stock_quantity': 2},
        ])

        with pytest.raises(StockLimitError):
            orchestrator.retry(recapture=True)
        assert orchestrator.state == states.FAILED
        assert len(sales_service.payloads) == 1

    def test_unexpected_error_marks_checkout_failed(self, orchestrator, sales_service):
        ready_for_payment(orchestrator)
        sales_service.error = RuntimeError('boom')

        with pytest.raises(RuntimeError):
            orchestrator.submit(cash('30.00'))

        assert orchestrator.state == states.FAILED


class TestCancelAndReset:

    @pytest.mark.parametrize('steps', [0, 1, 2])
    def test_cancel_leaves_cart_untouched(self, orchestrator, steps):
        if steps >= 1:
            orchestrator.review()
        if steps >= 2:
            orchestrator.begin_checkout()
        before = orchestrator.cart.to_dict()

        orchestrator.cancel()

        assert orchestrator.state == states.CANCELLED
        assert orchestrator.cart.to_dict() == before
        assert orchestrator.snapshot is None

    def test_cancel_after_failure(self, orchestrator, sales_service):
        ready_for_payment(orchestrator)
        sales_service.error = SubmissionError('down')
        with pytest.raises(SubmissionError):
            orchestrator.submit(cash('30.00'))

        orchestrator.cancel()
        assert orchestrator.state == states.CANCELLED
        assert not orchestrator.cart.is_empty()

    def test_cannot_cancel_completed(self, orchestrator):
        ready_for_payment(orchestrator)
        orchestrator.submit(cash('27.00'))
        with pytest.raises(CheckoutStateError):
            orchestrator.cancel()

    def test_cannot_cancel_while_submitting(self, orchestrator, sales_service):
        ready_for_payment(orchestrator)
        errors = []

        def cancel(payload):
            try:
                orchestrator.cancel()
            except CheckoutStateError as e:
                errors.append(e)

        sales_service.on_submit = cancel
        orchestrator.submit(cash('27.00'))
        assert len(errors) == 1

    def test_reset_after_completion(self, orchestrator):
        ready_for_payment(orchestrator)
        orchestrator.submit(cash('27.00'))
        orchestrator.reset()

        assert orchestrator.state == states.IDLE
        assert orchestrator.last_result is not None


class TestPersistence:

    def test_failed_checkout_survives_round_trip(self, orchestrator, sales_service):
        ready_for_payment(orchestrator)
        sales_service.error = StockConflictError('stock moved')
        with pytest.raises(StockConflictError):
            orchestrator.submit(cash('30.00'))

        restored = CheckoutOrchestrator.from_dict(orchestrator.to_dict(), orchestrator.cart, sales_service)

        assert restored.state == states.FAILED
        assert isinstance(restored.last_error, StockConflictError)
        assert restored.snapshot.to_dict() == orchestrator.snapshot.to_dict()
        assert restored.selection.to_dict() == orchestrator.selection.to_dict()

    def test_interrupted_submission_restores_as_failed(self, orchestrator, sales_service):
        data = orchestrator.to_dict()
        data['state'] = states.SUBMITTING

        restored = CheckoutOrchestrator.from_dict(data, orchestrator.cart, sales_service)
        assert restored.state == states.FAILED

    def test_snapshot_round_trip(self, cart_with_beans):
        snapshot = CheckoutSnapshot.capture(cart_with_beans, 'store-1')
        assert CheckoutSnapshot.from_dict(snapshot.to_dict()).to_dict() == snapshot.to_dict()
