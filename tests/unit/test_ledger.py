"""
Unit tests for the wallet ledger service.

The Lightning provider is a MagicMock; see conftest.py.
"""

import threading

import pytest

from vault.errors import (
    AlreadyExists,
    InsufficientBalance,
    InvalidInput,
    LightningDisabled,
    NotFound,
    PrivateNodeUnreachable,
    ProviderFailure,
    ProviderTimeout,
)
from vault.ledger import PRIVATE_NODE_MESSAGE, classify_payment_failure
from vault.lightning import PaymentResult
from vault.models import ChannelStatus, PaymentStatus, TransactionStatus, TransactionType

VALID_PHRASE = "abandon ability able about above absent absorb abstract absurd abuse access accident"


def _snapshot(store, wallet_id):
    return (
        store.get_wallet(wallet_id),
        store.list_transactions(wallet_id),
        store.list_channels(wallet_id),
        store.list_payments(wallet_id),
    )


class TestWalletLifecycle:
    """Test creating, replacing and restoring the wallet."""

    def test_create_wallet_starts_empty(self, service):
        wallet = service.create_wallet()

        assert wallet.id == 1
        assert wallet.balance == 0
        assert wallet.lightning_balance == 0
        assert wallet.lightning_enabled is False
        assert wallet.addresses == [wallet.current_address]
        assert len(wallet.mnemonic.split(" ")) == 12

    def test_second_create_rejected(self, service, wallet):
        with pytest.raises(AlreadyExists):
            service.create_wallet()

    def test_replace_wallet_discards_history(self, service, store, funded_wallet):
        service.send_onchain(funded_wallet.id, funded_wallet.current_address, 1000, 1000)

        replacement = service.replace_wallet()

        assert replacement.id == 1
        assert replacement.balance == 0
        assert store.list_transactions(replacement.id) == []
        mock_audit = service.audit
        mock_audit.log_wallet_event.assert_any_call("cleared", funded_wallet.id)

    def test_restore_rejected_while_wallet_exists(self, service, wallet):
        with pytest.raises(AlreadyExists, match="logout first"):
            service.restore_wallet(VALID_PHRASE)

    def test_restore_with_valid_phrase(self, service):
        restored = service.restore_wallet("  " + VALID_PHRASE.upper() + " ")

        assert restored.mnemonic == VALID_PHRASE
        assert restored.balance == 0
        assert restored.lightning_balance == 0

    @pytest.mark.parametrize(
        "phrase",
        [
            "abandon ability able",
            VALID_PHRASE + " acid",
            VALID_PHRASE.replace("absurd", "bitcoin"),
            "",
            None,
        ],
    )
    def test_restore_with_invalid_phrase(self, service, store, phrase):
        with pytest.raises(InvalidInput, match="recovery phrase"):
            service.restore_wallet(phrase)

        assert store.first_wallet() is None

    def test_get_wallet_missing(self, service):
        with pytest.raises(NotFound):
            service.get_wallet(1)

    def test_clear_then_get_not_found(self, service, store, wallet):
        store.clear()

        with pytest.raises(NotFound):
            service.get_wallet(wallet.id)

    def test_new_address_keeps_history(self, service, wallet):
        updated = service.new_address(wallet.id)

        assert updated.current_address != wallet.current_address
        assert updated.addresses == [wallet.current_address, updated.current_address]

    def test_wallet_events_audited(self, service, mock_audit_logger):
        wallet = service.create_wallet()

        mock_audit_logger.log_wallet_event.assert_called_with("created", wallet.id, address=wallet.current_address)


class TestOnchain:
    """Test on-chain send, receive and fee estimation."""

    def test_send_debits_amount_plus_fee(self, service, store, funded_wallet, sample_bitcoin_address):
        tx = service.send_onchain(funded_wallet.id, sample_bitcoin_address, 50_000, 1000)

        assert store.get_wallet(funded_wallet.id).balance == 49_000
        assert tx.status == TransactionStatus.PENDING
        assert tx.type == TransactionType.SEND
        assert tx.amount == 50_000
        assert tx.fee == 1000
        assert [t.id for t in service.list_transactions(funded_wallet.id)] == [tx.id]

    def test_send_estimates_fee_when_omitted(self, service, store, funded_wallet, sample_bitcoin_address):
        tx = service.send_onchain(funded_wallet.id, sample_bitcoin_address, 50_000)

        assert tx.fee == 1000
        assert store.get_wallet(funded_wallet.id).balance == 49_000

    def test_send_exact_balance_allowed(self, service, store, funded_wallet, sample_bitcoin_address):
        service.send_onchain(funded_wallet.id, sample_bitcoin_address, 99_000, 1000)

        assert store.get_wallet(funded_wallet.id).balance == 0

    def test_insufficient_balance_leaves_state_untouched(self, service, store, funded_wallet, sample_bitcoin_address):
        before = _snapshot(store, funded_wallet.id)

        with pytest.raises(InsufficientBalance) as exc_info:
            service.send_onchain(funded_wallet.id, sample_bitcoin_address, 99_500, 1000)

        assert exc_info.value.details == {"balance": 100_000, "required": 100_500}
        assert _snapshot(store, funded_wallet.id) == before

    def test_invalid_address_rejected(self, service, store, funded_wallet):
        with pytest.raises(InvalidInput, match="Invalid Bitcoin address"):
            service.send_onchain(funded_wallet.id, "not-an-address", 1000, 1000)

        assert store.get_wallet(funded_wallet.id).balance == 100_000

    @pytest.mark.parametrize("amount,fee", [(0, 1000), (-5, 1000), (1000, -1), ("1000", 1000), (True, 1000)])
    def test_bad_amounts_rejected(self, service, funded_wallet, sample_bitcoin_address, amount, fee):
        with pytest.raises(InvalidInput):
            service.send_onchain(funded_wallet.id, sample_bitcoin_address, amount, fee)

    def test_send_from_missing_wallet(self, service, sample_bitcoin_address):
        with pytest.raises(NotFound):
            service.send_onchain(9, sample_bitcoin_address, 1000, 1000)

    def test_receive_credits_balance(self, service, store, wallet):
        tx = service.receive_onchain(wallet.id, 25_000)

        assert store.get_wallet(wallet.id).balance == 25_000
        assert tx.type == TransactionType.RECEIVE
        assert tx.status == TransactionStatus.CONFIRMED
        assert tx.address == wallet.current_address

    def test_receive_to_foreign_address_rejected(self, service, wallet, sample_bitcoin_address):
        with pytest.raises(InvalidInput):
            service.receive_onchain(wallet.id, 25_000, sample_bitcoin_address)

    def test_balance_change_audited(self, service, funded_wallet, sample_bitcoin_address, mock_audit_logger):
        tx = service.send_onchain(funded_wallet.id, sample_bitcoin_address, 50_000, 1000)

        mock_audit_logger.log_balance_change.assert_called_with(
            funded_wallet.id, "onchain", 100_000, 49_000, f"send tx={tx.id}"
        )

    def test_estimate_fee(self, service):
        assert service.estimate_fee(50_000) == 1000
        assert service.estimate_fee(500_000) == 5000

    def test_concurrent_sends_never_overdraw(self, service, store, funded_wallet, sample_bitcoin_address):
        results = []

        def send():
            try:
                service.send_onchain(funded_wallet.id, sample_bitcoin_address, 10_000, 1000)
                results.append(True)
            except InsufficientBalance:
                results.append(False)

        threads = [threading.Thread(target=send) for _ in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        successes = results.count(True)
        assert successes == 9
        assert store.get_wallet(funded_wallet.id).balance == 100_000 - successes * 11_000
        assert len(store.list_transactions(funded_wallet.id)) == successes


class TestLightningToggle:
    """Test enabling and disabling Lightning."""

    def test_enable_and_disable(self, service, wallet):
        assert service.set_lightning_enabled(wallet.id, True).lightning_enabled is True
        assert service.set_lightning_enabled(wallet.id, False).lightning_enabled is False

    def test_non_bool_rejected(self, service, wallet):
        with pytest.raises(InvalidInput):
            service.set_lightning_enabled(wallet.id, "yes")

    def test_missing_wallet(self, service):
        with pytest.raises(NotFound):
            service.set_lightning_enabled(3, True)


class TestInvoices:
    """Test invoice creation and status checks."""

    def test_disabled_wallet_cannot_create_invoice(self, service, store, provider, wallet):
        before = _snapshot(store, wallet.id)

        with pytest.raises(LightningDisabled):
            service.create_invoice(wallet.id, 1000)

        provider.create_invoice.assert_not_called()
        assert _snapshot(store, wallet.id) == before

    def test_invoice_recorded_as_pending_receive(self, service, store, provider, lightning_wallet, sample_invoice):
        payment = service.create_invoice(lightning_wallet.id, 1000, "coffee")

        provider.create_invoice.assert_called_once_with(1000, "coffee")
        assert payment.payment_hash == "a" * 64
        assert payment.payment_request == sample_invoice
        assert payment.type == TransactionType.RECEIVE
        assert payment.status == PaymentStatus.PENDING
        assert store.get_wallet(lightning_wallet.id).lightning_balance == 300_000

    def test_invoice_amount_validated(self, service, provider, lightning_wallet):
        with pytest.raises(InvalidInput):
            service.create_invoice(lightning_wallet.id, 0)

        provider.create_invoice.assert_not_called()

    def test_provider_failure_records_nothing(self, service, store, provider, lightning_wallet, mock_audit_logger):
        provider.create_invoice.side_effect = ProviderFailure("LNbits API error: 500")

        with pytest.raises(ProviderFailure):
            service.create_invoice(lightning_wallet.id, 1000)

        assert store.list_payments(lightning_wallet.id) == []
        mock_audit_logger.log_provider_call.assert_called_with("mock", "create_invoice", False, "LNbits API error: 500")

    def test_check_invoice_reports_without_crediting(self, service, store, provider, lightning_wallet):
        payment = service.create_invoice(lightning_wallet.id, 1000)
        provider.check_payment_status.return_value = True

        assert service.check_invoice(lightning_wallet.id, payment.payment_hash) is True

        provider.check_payment_status.assert_called_once_with(payment.payment_hash)
        assert store.get_wallet(lightning_wallet.id).lightning_balance == 300_000
        assert store.get_payment(payment.id).status == PaymentStatus.PENDING

    def test_check_unknown_invoice(self, service, provider, lightning_wallet):
        with pytest.raises(NotFound):
            service.check_invoice(lightning_wallet.id, "f" * 64)

        provider.check_payment_status.assert_not_called()

    def test_check_invoice_while_disabled(self, service, store, provider, lightning_wallet):
        payment = service.create_invoice(lightning_wallet.id, 1000)
        store.update_wallet(lightning_wallet.id, lightning_enabled=False)
        before = _snapshot(store, lightning_wallet.id)

        with pytest.raises(LightningDisabled):
            service.check_invoice(lightning_wallet.id, payment.payment_hash)

        provider.check_payment_status.assert_not_called()
        assert _snapshot(store, lightning_wallet.id) == before

    def test_invoice_recorded_when_disabled_during_provider_call(self, service, store, provider, lightning_wallet):
        issued = provider.create_invoice.return_value

        def issue_then_disable(amount, memo):
            store.update_wallet(lightning_wallet.id, lightning_enabled=False)
            return issued

        provider.create_invoice.side_effect = issue_then_disable

        payment = service.create_invoice(lightning_wallet.id, 1000)

        assert store.get_payment_by_hash(lightning_wallet.id, issued.payment_hash).id == payment.id

    def test_invoice_orphaned_when_wallet_removed(self, service, store, provider, lightning_wallet, mock_audit_logger):
        issued = provider.create_invoice.return_value

        def issue_then_clear(amount, memo):
            store.clear()
            return issued

        provider.create_invoice.side_effect = issue_then_clear

        with pytest.raises(NotFound):
            service.create_invoice(lightning_wallet.id, 1000)

        error_type, _, context = mock_audit_logger.log_error.call_args[0]
        assert error_type == "orphaned_invoice"
        assert context["payment_hash"] == issued.payment_hash


class TestPayInvoice:
    """Test outgoing Lightning payments."""

    def test_pay_debits_invoice_amount_and_fee(self, service, store, provider, lightning_wallet, sample_invoice):
        provider.send_payment.return_value = PaymentResult("b" * 64, "c" * 64, "complete", fee=5)

        payment = service.pay_invoice(lightning_wallet.id, sample_invoice)

        provider.send_payment.assert_called_once_with(sample_invoice)
        assert payment.amount == 250_000
        assert payment.fee == 5
        assert payment.status == PaymentStatus.SUCCEEDED
        assert payment.type == TransactionType.SEND
        assert store.get_wallet(lightning_wallet.id).lightning_balance == 49_995
        assert store.get_wallet(lightning_wallet.id).balance == 0

    def test_pay_while_disabled(self, service, store, provider, wallet, sample_invoice):
        before = _snapshot(store, wallet.id)

        with pytest.raises(LightningDisabled):
            service.pay_invoice(wallet.id, sample_invoice)

        provider.send_payment.assert_not_called()
        assert _snapshot(store, wallet.id) == before

    def test_invalid_invoice_rejected(self, service, provider, lightning_wallet):
        with pytest.raises(InvalidInput):
            service.pay_invoice(lightning_wallet.id, "hello")

        provider.send_payment.assert_not_called()

    def test_insufficient_lightning_balance_checked_before_provider(
        self, service, store, provider, lightning_wallet, sample_invoice
    ):
        store.update_wallet(lightning_wallet.id, lightning_balance=100_000)

        with pytest.raises(InsufficientBalance):
            service.pay_invoice(lightning_wallet.id, sample_invoice)

        provider.send_payment.assert_not_called()
        assert store.get_wallet(lightning_wallet.id).lightning_balance == 100_000

    def test_fee_beyond_balance_is_audited(
        self, service, store, provider, lightning_wallet, sample_invoice, mock_audit_logger
    ):
        store.update_wallet(lightning_wallet.id, lightning_balance=250_004)
        provider.send_payment.return_value = PaymentResult("b" * 64, "c" * 64, "complete", fee=10)

        payment = service.pay_invoice(lightning_wallet.id, sample_invoice)

        assert payment.fee == 10
        assert store.get_wallet(lightning_wallet.id).lightning_balance == 0
        error_type, _, context = mock_audit_logger.log_error.call_args[0]
        assert error_type == "fee_shortfall"
        assert context["unpaid_fee"] == 6

    def test_amount_reserved_while_provider_pays(self, service, store, provider, lightning_wallet, sample_invoice):
        seen = {}

        def pay(payment_request):
            seen["during"] = store.get_wallet(lightning_wallet.id).lightning_balance
            return PaymentResult("b" * 64, "c" * 64, "complete", fee=0)

        provider.send_payment.side_effect = pay

        service.pay_invoice(lightning_wallet.id, sample_invoice)

        assert seen["during"] == 50_000
        assert store.get_wallet(lightning_wallet.id).lightning_balance == 50_000

    def test_concurrent_payments_never_overspend(self, service, store, provider, lightning_wallet, sample_invoice):
        in_flight = threading.Event()
        release = threading.Event()
        results = []

        def slow_pay(payment_request):
            in_flight.set()
            release.wait(timeout=5)
            return PaymentResult("b" * 64, "c" * 64, "complete", fee=0)

        provider.send_payment.side_effect = slow_pay

        def pay():
            try:
                service.pay_invoice(lightning_wallet.id, sample_invoice)
                results.append(True)
            except InsufficientBalance:
                results.append(False)

        first = threading.Thread(target=pay)
        first.start()
        assert in_flight.wait(timeout=5)

        # The first payment is still with the provider; its amount is already reserved.
        pay()
        release.set()
        first.join()

        assert sorted(results) == [False, True]
        assert provider.send_payment.call_count == 1
        assert store.get_wallet(lightning_wallet.id).lightning_balance == 50_000
        assert len(store.list_payments(lightning_wallet.id)) == 1

    def test_amountless_invoice_debits_only_fee(self, service, store, provider, lightning_wallet, amountless_invoice):
        provider.send_payment.return_value = PaymentResult("b" * 64, "c" * 64, "complete", fee=3)

        payment = service.pay_invoice(lightning_wallet.id, amountless_invoice)

        assert payment.amount == 0
        assert store.get_wallet(lightning_wallet.id).lightning_balance == 299_997

    def test_private_node_failure(self, service, store, provider, lightning_wallet, sample_invoice):
        provider.send_payment.return_value = PaymentResult(
            "", "", "failed", error="Unable to route: destination is a private node"
        )
        before = _snapshot(store, lightning_wallet.id)

        with pytest.raises(PrivateNodeUnreachable) as exc_info:
            service.pay_invoice(lightning_wallet.id, sample_invoice)

        assert exc_info.value.message == PRIVATE_NODE_MESSAGE
        assert exc_info.value.status_code == 400
        assert _snapshot(store, lightning_wallet.id) == before

    def test_generic_failure(self, service, store, provider, lightning_wallet, sample_invoice):
        provider.send_payment.return_value = PaymentResult("", "", "failed", error="insufficient channel liquidity")

        with pytest.raises(ProviderFailure) as exc_info:
            service.pay_invoice(lightning_wallet.id, sample_invoice)

        assert not isinstance(exc_info.value, PrivateNodeUnreachable)
        assert exc_info.value.message == "insufficient channel liquidity"
        assert store.list_payments(lightning_wallet.id) == []

    def test_timeout_leaves_state_untouched(
        self, service, store, provider, lightning_wallet, sample_invoice, mock_audit_logger
    ):
        provider.send_payment.side_effect = ProviderTimeout("Lightning provider did not respond within 10 seconds")
        before = _snapshot(store, lightning_wallet.id)

        with pytest.raises(ProviderTimeout):
            service.pay_invoice(lightning_wallet.id, sample_invoice)

        assert _snapshot(store, lightning_wallet.id) == before
        mock_audit_logger.log_provider_call.assert_called_with(
            "mock", "send_payment", False, "Lightning provider did not respond within 10 seconds"
        )


class TestClassifyPaymentFailure:
    """Test mapping of provider failure text."""

    @pytest.mark.parametrize("error", ["Private Node cannot be reached", "invoice has no ROUTE HINTS"])
    def test_private_node_markers(self, error):
        failure = classify_payment_failure(error)

        assert isinstance(failure, PrivateNodeUnreachable)
        assert failure.details == {"provider_error": error}

    def test_unknown_error(self):
        failure = classify_payment_failure(None)

        assert type(failure) is ProviderFailure
        assert failure.message == "Payment failed with unknown error"


class TestChannels:
    """Test opening channels from the on-chain pool."""

    def test_open_channel_moves_funds(self, service, store, funded_wallet):
        store.update_wallet(funded_wallet.id, balance=20_000)

        channel = service.open_channel(funded_wallet.id, 20_000, 15_000)

        wallet = store.get_wallet(funded_wallet.id)
        assert wallet.balance == 0
        assert wallet.lightning_balance == 15_000
        assert channel.status == ChannelStatus.OPENING
        assert channel.capacity == 20_000
        assert channel.local_balance == 15_000
        assert len(channel.remote_node_id) == 66
        assert service.list_channels(funded_wallet.id)[0].id == channel.id

    def test_local_balance_defaults_to_capacity(self, service, store, funded_wallet):
        channel = service.open_channel(funded_wallet.id, 40_000)

        assert channel.local_balance == 40_000
        assert store.get_wallet(funded_wallet.id).lightning_balance == 40_000

    def test_does_not_require_lightning_enabled(self, service, funded_wallet):
        assert funded_wallet.lightning_enabled is False

        service.open_channel(funded_wallet.id, 1000, 0)

    def test_insufficient_balance(self, service, store, funded_wallet):
        before = _snapshot(store, funded_wallet.id)

        with pytest.raises(InsufficientBalance):
            service.open_channel(funded_wallet.id, 100_001)

        assert _snapshot(store, funded_wallet.id) == before

    @pytest.mark.parametrize("capacity,local_balance", [(0, None), (1000, 1001), (1000, -1)])
    def test_invalid_amounts(self, service, funded_wallet, capacity, local_balance):
        with pytest.raises(InvalidInput):
            service.open_channel(funded_wallet.id, capacity, local_balance)
