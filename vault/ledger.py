"""
Wallet ledger operations.

Every balance-affecting state transition lives here: on-chain send and
receive, Lightning enablement, invoice creation, invoice payment and channel
open.  ``WalletService`` is built with an explicit store and Lightning
provider; nothing is looked up globally.

Each operation re-reads the wallet, validates, then mutates balances and
appends its record while holding ``store.lock``.  A failed operation leaves
the store exactly as it found it.  Provider HTTP calls are made outside the
lock.
"""

import logging
from typing import List, Optional

from vault import utils
from vault.audit_logger import AuditLogger, get_audit_logger
from vault.errors import (
    AlreadyExists,
    InsufficientBalance,
    InvalidInput,
    LightningDisabled,
    NotFound,
    PrivateNodeUnreachable,
    ProviderFailure,
)
from vault.lightning import InvoiceProvider
from vault.models import (
    ChannelStatus,
    LightningChannel,
    LightningPayment,
    PaymentStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
    Wallet,
)
from vault.storage import MemoryStore

logger = logging.getLogger(__name__)

PRIVATE_NODE_MARKERS = ("private node", "route hints")
PRIVATE_NODE_MESSAGE = (
    "Payment failed: Invoice was created by a private node that cannot be reached. "
    "This is a limitation with the Lightning Network, not your wallet. "
    "The invoice creator needs to include route hints."
)


def classify_payment_failure(error: Optional[str]) -> ProviderFailure:
    """Map a provider's failure message onto the error category the caller sees."""
    message = error or "Payment failed with unknown error"
    lowered = message.lower()
    if any(marker in lowered for marker in PRIVATE_NODE_MARKERS):
        return PrivateNodeUnreachable(PRIVATE_NODE_MESSAGE, details={"provider_error": message})
    return ProviderFailure(message)


def _require_sats(value, name: str, minimum: int = 1) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidInput(f"{name} must be an integer number of sats")
    if value < minimum:
        raise InvalidInput(f"{name} must be at least {minimum}")


class WalletService:
    """Ledger operations over a single-tenant wallet store."""

    def __init__(
        self,
        store: MemoryStore,
        provider: InvoiceProvider,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.store = store
        self.provider = provider
        self.audit = audit_logger or get_audit_logger()

    # ------------------------------------------------------------------
    # wallet lifecycle
    # ------------------------------------------------------------------

    def create_wallet(self, mnemonic: Optional[str] = None, initial_balance: int = 0) -> Wallet:
        """Provision the wallet. Raises AlreadyExists if one is present."""
        if initial_balance < 0:
            raise InvalidInput("initial balance cannot be negative")

        address = utils.generate_address()
        wallet = self.store.create_wallet(
            mnemonic=mnemonic or utils.generate_mnemonic(),
            current_address=address,
            addresses=[address],
            balance=initial_balance,
        )
        self.audit.log_wallet_event("created", wallet.id, address=address)
        return wallet

    def replace_wallet(self) -> Wallet:
        """Discard whatever is stored and start over with a fresh wallet."""
        with self.store.lock:
            previous = self.store.first_wallet()
            self.store.clear()
            if previous is not None:
                self.audit.log_wallet_event("cleared", previous.id)
            return self.create_wallet()

    def restore_wallet(self, mnemonic: str) -> Wallet:
        """
        Recreate the wallet from a recovery phrase.

        Balances start at zero: there is no chain view to recover them from.
        """
        with self.store.lock:
            existing = self.store.first_wallet()
            if existing is not None:
                raise AlreadyExists("Wallet already exists. Please logout first.")

            if not isinstance(mnemonic, str) or not utils.validate_mnemonic(mnemonic):
                raise InvalidInput("Invalid recovery phrase. Please check your words and try again.")

            wallet = self.create_wallet(mnemonic=utils.normalize_mnemonic(mnemonic))
            self.audit.log_wallet_event("restored", wallet.id)
            return wallet

    def get_wallet(self, wallet_id: int) -> Wallet:
        wallet = self.store.get_wallet(wallet_id)
        if wallet is None:
            raise NotFound("Wallet not found")
        return wallet

    def new_address(self, wallet_id: int) -> Wallet:
        """Issue a fresh receiving address and keep the old ones."""
        with self.store.lock:
            wallet = self.get_wallet(wallet_id)
            address = utils.generate_address()
            updated = self.store.update_wallet(
                wallet_id,
                current_address=address,
                addresses=wallet.addresses + [address],
            )
        self.audit.log_wallet_event("address_issued", wallet_id, address=address)
        return updated

    def list_transactions(self, wallet_id: int) -> List[Transaction]:
        self.get_wallet(wallet_id)
        return self.store.list_transactions(wallet_id)

    def list_channels(self, wallet_id: int) -> List[LightningChannel]:
        self.get_wallet(wallet_id)
        return self.store.list_channels(wallet_id)

    def list_payments(self, wallet_id: int) -> List[LightningPayment]:
        self.get_wallet(wallet_id)
        return self.store.list_payments(wallet_id)

    # ------------------------------------------------------------------
    # on-chain
    # ------------------------------------------------------------------

    def send_onchain(self, wallet_id: int, address: str, amount: int, fee: Optional[int] = None) -> Transaction:
        """
        Debit ``amount + fee`` and record a pending send.

        Nothing is broadcast; ``pending`` is where the transaction stays.
        """
        _require_sats(amount, "amount")
        if fee is None:
            fee = utils.estimate_fee(amount)
        _require_sats(fee, "fee", minimum=0)
        if not isinstance(address, str) or not utils.validate_address(address):
            raise InvalidInput("Invalid Bitcoin address")

        with self.store.lock:
            wallet = self.get_wallet(wallet_id)
            total = amount + fee
            if wallet.balance < total:
                raise InsufficientBalance(
                    "Insufficient balance",
                    details={"balance": wallet.balance, "required": total},
                )

            tx = self.store.create_transaction(
                wallet_id=wallet_id,
                type=TransactionType.SEND,
                address=address,
                amount=amount,
                fee=fee,
                status=TransactionStatus.PENDING,
            )
            self.store.update_wallet(wallet_id, balance=wallet.balance - total)

        self.audit.log_balance_change(wallet_id, "onchain", wallet.balance, wallet.balance - total, f"send tx={tx.id}")
        return tx

    def receive_onchain(self, wallet_id: int, amount: int, address: Optional[str] = None) -> Transaction:
        """Credit ``amount`` to the on-chain pool and record a confirmed receive."""
        _require_sats(amount, "amount")

        with self.store.lock:
            wallet = self.get_wallet(wallet_id)
            address = address or wallet.current_address
            if address not in wallet.addresses:
                raise InvalidInput("Address does not belong to this wallet")

            tx = self.store.create_transaction(
                wallet_id=wallet_id,
                type=TransactionType.RECEIVE,
                address=address,
                amount=amount,
                fee=0,
                status=TransactionStatus.CONFIRMED,
            )
            self.store.update_wallet(wallet_id, balance=wallet.balance + amount)

        self.audit.log_balance_change(
            wallet_id, "onchain", wallet.balance, wallet.balance + amount, f"receive tx={tx.id}"
        )
        return tx

    # ------------------------------------------------------------------
    # Lightning
    # ------------------------------------------------------------------

    def set_lightning_enabled(self, wallet_id: int, enabled: bool) -> Wallet:
        if not isinstance(enabled, bool):
            raise InvalidInput("enabled must be true or false")
        with self.store.lock:
            self.get_wallet(wallet_id)
            wallet = self.store.update_wallet(wallet_id, lightning_enabled=enabled)
        self.audit.log_event("lightning.toggled", wallet_id=wallet_id, enabled=enabled)
        return wallet

    def _require_lightning(self, wallet_id: int) -> Wallet:
        wallet = self.get_wallet(wallet_id)
        if not wallet.lightning_enabled:
            raise LightningDisabled("Lightning Network is not enabled")
        return wallet

    def create_invoice(self, wallet_id: int, amount: int, memo: str = "") -> LightningPayment:
        """
        Ask the provider for an invoice and record it as a pending receive.

        ``lightning_balance`` is not credited here, and nothing credits it
        when the invoice is later paid.  Once the provider has issued the
        invoice it is recorded even if Lightning was switched off meanwhile.
        """
        self._require_lightning(wallet_id)
        _require_sats(amount, "amount")
        memo = memo or ""

        try:
            invoice = self.provider.create_invoice(amount, memo)
        except ProviderFailure as exc:
            self.audit.log_provider_call(self.provider.name, "create_invoice", False, exc.message)
            raise
        self.audit.log_provider_call(self.provider.name, "create_invoice", True)

        with self.store.lock:
            wallet = self.store.get_wallet(wallet_id)
            if wallet is None:
                self.audit.log_error(
                    "orphaned_invoice",
                    "Wallet removed while the provider issued an invoice",
                    {"wallet": wallet_id, "payment_hash": invoice.payment_hash},
                )
                raise NotFound("Wallet not found")
            if not wallet.lightning_enabled:
                logger.warning(
                    f"Lightning disabled on wallet {wallet_id} while invoice {invoice.payment_hash} was issued; "
                    "recording it anyway"
                )
            return self.store.create_payment(
                wallet_id=wallet_id,
                type=TransactionType.RECEIVE,
                amount=amount,
                fee=0,
                payment_hash=invoice.payment_hash,
                payment_request=invoice.payment_request,
                status=PaymentStatus.PENDING,
            )

    def check_invoice(self, wallet_id: int, payment_hash: str) -> bool:
        """Whether the provider reports the invoice as paid. Changes nothing locally."""
        self._require_lightning(wallet_id)
        if self.store.get_payment_by_hash(wallet_id, payment_hash) is None:
            raise NotFound("Invoice not found")

        try:
            paid = self.provider.check_payment_status(payment_hash)
        except ProviderFailure as exc:
            self.audit.log_provider_call(self.provider.name, "check_payment_status", False, exc.message)
            raise
        self.audit.log_provider_call(self.provider.name, "check_payment_status", True)
        return paid

    def _release(self, wallet_id: int, amount: int, reason: str) -> None:
        """Give a reserved amount back to the Lightning pool."""
        if not amount:
            return
        with self.store.lock:
            wallet = self.store.get_wallet(wallet_id)
            if wallet is None:
                logger.warning(f"Wallet {wallet_id} gone before {amount} reserved sats could be released")
                return
            after = wallet.lightning_balance + amount
            self.store.update_wallet(wallet_id, lightning_balance=after)
        self.audit.log_balance_change(wallet_id, "lightning", wallet.lightning_balance, after, reason)

    def pay_invoice(self, wallet_id: int, payment_request: str) -> LightningPayment:
        """
        Pay a BOLT11 invoice through the provider.

        The invoice amount is reserved from ``lightning_balance`` before the
        provider is called, so concurrent payments cannot spend the same sats.
        A failed or timed-out payment releases the reservation.  Amountless
        invoices reserve nothing and debit only the fee.
        """
        self._require_lightning(wallet_id)
        amount = utils.decode_invoice_amount(payment_request)
        payment_request = payment_request.strip()

        with self.store.lock:
            wallet = self._require_lightning(wallet_id)
            if amount > wallet.lightning_balance:
                raise InsufficientBalance(
                    "Insufficient Lightning balance",
                    details={"lightning_balance": wallet.lightning_balance, "required": amount},
                )
            reserved_from = wallet.lightning_balance
            self.store.update_wallet(wallet_id, lightning_balance=reserved_from - amount)
        self.audit.log_balance_change(
            wallet_id, "lightning", reserved_from, reserved_from - amount, "pay reserve"
        )

        try:
            result = self.provider.send_payment(payment_request)
        except ProviderFailure as exc:
            self.audit.log_provider_call(self.provider.name, "send_payment", False, exc.message)
            self._release(wallet_id, amount, "pay release")
            raise
        if not result.complete:
            self.audit.log_provider_call(self.provider.name, "send_payment", False, result.error)
            self._release(wallet_id, amount, "pay release")
            raise classify_payment_failure(result.error)
        self.audit.log_provider_call(self.provider.name, "send_payment", True)

        with self.store.lock:
            payment = self.store.create_payment(
                wallet_id=wallet_id,
                type=TransactionType.SEND,
                amount=amount,
                fee=result.fee,
                payment_hash=result.payment_hash,
                payment_request=payment_request,
                status=PaymentStatus.SUCCEEDED,
            )
            wallet = self.store.get_wallet(wallet_id)
            if wallet is None:
                return payment
            fee_debit = min(payment.fee, wallet.lightning_balance)
            after = wallet.lightning_balance - fee_debit
            self.store.update_wallet(wallet_id, lightning_balance=after)

        if fee_debit < payment.fee:
            self.audit.log_error(
                "fee_shortfall",
                f"Routing fee {payment.fee} exceeds remaining Lightning balance",
                {"wallet": wallet_id, "payment": payment.id, "unpaid_fee": payment.fee - fee_debit},
            )
        if fee_debit:
            self.audit.log_balance_change(
                wallet_id, "lightning", wallet.lightning_balance, after, f"pay fee payment={payment.id}"
            )
        return payment

    def open_channel(self, wallet_id: int, capacity: int, local_balance: Optional[int] = None) -> LightningChannel:
        """
        Move ``capacity`` out of the on-chain pool into a new channel.

        The Lightning pool is credited with ``local_balance`` (defaults to the
        full capacity).  The channel starts, and stays, ``opening``.
        """
        _require_sats(capacity, "capacity")
        if local_balance is None:
            local_balance = capacity
        _require_sats(local_balance, "local_balance", minimum=0)
        if local_balance > capacity:
            raise InvalidInput("local_balance must be between 0 and capacity")

        with self.store.lock:
            wallet = self.get_wallet(wallet_id)
            if wallet.balance < capacity:
                raise InsufficientBalance(
                    "Insufficient balance",
                    details={"balance": wallet.balance, "required": capacity},
                )

            channel = self.store.create_channel(
                wallet_id=wallet_id,
                remote_node_id=utils.generate_node_id(),
                capacity=capacity,
                local_balance=local_balance,
                status=ChannelStatus.OPENING,
            )
            self.store.update_wallet(
                wallet_id,
                balance=wallet.balance - capacity,
                lightning_balance=wallet.lightning_balance + local_balance,
            )

        self.audit.log_balance_change(
            wallet_id, "onchain", wallet.balance, wallet.balance - capacity, f"channel_open channel={channel.id}"
        )
        self.audit.log_balance_change(
            wallet_id,
            "lightning",
            wallet.lightning_balance,
            wallet.lightning_balance + local_balance,
            f"channel_open channel={channel.id}",
        )
        return channel

    @staticmethod
    def estimate_fee(amount: int) -> int:
        return utils.estimate_fee(amount)
