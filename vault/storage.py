"""In-memory record store for the wallet ledger.

The store keeps every record in Python dictionaries keyed by integer id, one
bucket per record type, with a monotonically increasing id counter per
bucket.  It is an ordinary object: the application factory builds one per
process and the tests build one per test.  Nothing here is durable.

Reads hand out copies, so the only way to change stored state is through the
``create_*``/``update_*`` methods.  ``lock`` is re-entrant; the ledger holds it
across read-validate-write sequences so that balance updates cannot be lost
to a concurrent writer.
"""

from __future__ import annotations

import copy
import threading
from dataclasses import fields
from datetime import datetime
from typing import Any, Dict, List, Optional

from vault.errors import AlreadyExists, InvalidInput, NotFound
from vault.models import (
    ChannelStatus,
    LightningChannel,
    LightningPayment,
    PaymentStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
    Wallet,
    utc_now,
)

BUCKETS = ("wallets", "transactions", "channels", "payments")

# Fields that never change once a record exists.
_FROZEN_FIELDS = {
    "wallets": {"id", "mnemonic"},
    "transactions": {"id", "wallet_id", "type", "address", "amount", "fee", "timestamp"},
    "channels": {"id", "wallet_id", "remote_node_id", "capacity", "created_at"},
    "payments": {"id", "wallet_id", "type", "payment_hash", "payment_request", "timestamp"},
}


class MemoryStore:
    """Keyed record buckets plus per-bucket id allocation."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self._buckets: Dict[str, Dict[int, Any]] = {}
        self._next_ids: Dict[str, int] = {}
        self.clear()

    def clear(self) -> None:
        """Drop every record and reset every id counter to 1."""
        with self.lock:
            self._buckets = {name: {} for name in BUCKETS}
            self._next_ids = {name: 1 for name in BUCKETS}

    # ------------------------------------------------------------------
    # generic helpers
    # ------------------------------------------------------------------

    def _allocate_id(self, bucket: str) -> int:
        record_id = self._next_ids[bucket]
        self._next_ids[bucket] = record_id + 1
        return record_id

    def _put(self, bucket: str, record: Any) -> Any:
        self._buckets[bucket][record.id] = copy.deepcopy(record)
        return copy.deepcopy(record)

    def _get(self, bucket: str, record_id: int) -> Optional[Any]:
        record = self._buckets[bucket].get(record_id)
        return copy.deepcopy(record) if record is not None else None

    def _update(self, bucket: str, label: str, record_id: int, changes: Dict[str, Any]) -> Any:
        with self.lock:
            current = self._buckets[bucket].get(record_id)
            if current is None:
                raise NotFound(f"{label} {record_id} not found")

            allowed = {f.name for f in fields(current)} - _FROZEN_FIELDS[bucket]
            unknown = set(changes) - allowed
            if unknown:
                raise InvalidInput(f"Cannot update {label.lower()} field(s): {', '.join(sorted(unknown))}")

            updated = copy.deepcopy(current)
            for name, value in changes.items():
                setattr(updated, name, value)
            return self._put(bucket, updated)

    def _list_by_wallet(self, bucket: str, wallet_id: int, time_field: str) -> List[Any]:
        with self.lock:
            records = [r for r in self._buckets[bucket].values() if r.wallet_id == wallet_id]
            records.sort(key=lambda r: (getattr(r, time_field), r.id), reverse=True)
            return copy.deepcopy(records)

    # ------------------------------------------------------------------
    # wallets
    # ------------------------------------------------------------------

    def create_wallet(
        self,
        mnemonic: str,
        current_address: str,
        addresses: List[str],
        balance: int = 0,
        lightning_enabled: bool = False,
        lightning_balance: int = 0,
    ) -> Wallet:
        with self.lock:
            if self._buckets["wallets"]:
                raise AlreadyExists("Wallet already exists. Please logout first.")
            wallet = Wallet(
                id=self._allocate_id("wallets"),
                mnemonic=mnemonic,
                current_address=current_address,
                addresses=list(addresses),
                balance=balance,
                lightning_enabled=lightning_enabled,
                lightning_balance=lightning_balance,
            )
            return self._put("wallets", wallet)

    def get_wallet(self, wallet_id: int) -> Optional[Wallet]:
        with self.lock:
            return self._get("wallets", wallet_id)

    def first_wallet(self) -> Optional[Wallet]:
        """Return the single tenant, if one has been provisioned."""
        with self.lock:
            for wallet_id in sorted(self._buckets["wallets"]):
                return self._get("wallets", wallet_id)
            return None

    def update_wallet(self, wallet_id: int, **changes: Any) -> Wallet:
        return self._update("wallets", "Wallet", wallet_id, changes)

    # ------------------------------------------------------------------
    # on-chain transactions
    # ------------------------------------------------------------------

    def create_transaction(
        self,
        wallet_id: int,
        type: TransactionType,
        address: str,
        amount: int,
        fee: int = 0,
        status: TransactionStatus = TransactionStatus.PENDING,
        timestamp: Optional[datetime] = None,
    ) -> Transaction:
        with self.lock:
            tx = Transaction(
                id=self._allocate_id("transactions"),
                wallet_id=wallet_id,
                type=TransactionType(type),
                address=address,
                amount=amount,
                fee=fee,
                status=TransactionStatus(status),
                timestamp=timestamp or utc_now(),
            )
            return self._put("transactions", tx)

    def get_transaction(self, tx_id: int) -> Optional[Transaction]:
        with self.lock:
            return self._get("transactions", tx_id)

    def update_transaction(self, tx_id: int, **changes: Any) -> Transaction:
        if "status" in changes:
            changes["status"] = TransactionStatus(changes["status"])
        return self._update("transactions", "Transaction", tx_id, changes)

    def list_transactions(self, wallet_id: int) -> List[Transaction]:
        return self._list_by_wallet("transactions", wallet_id, "timestamp")

    # ------------------------------------------------------------------
    # Lightning channels
    # ------------------------------------------------------------------

    def create_channel(
        self,
        wallet_id: int,
        remote_node_id: str,
        capacity: int,
        local_balance: int,
        status: ChannelStatus = ChannelStatus.OPENING,
    ) -> LightningChannel:
        with self.lock:
            channel = LightningChannel(
                id=self._allocate_id("channels"),
                wallet_id=wallet_id,
                remote_node_id=remote_node_id,
                capacity=capacity,
                local_balance=local_balance,
                status=ChannelStatus(status),
            )
            return self._put("channels", channel)

    def get_channel(self, channel_id: int) -> Optional[LightningChannel]:
        with self.lock:
            return self._get("channels", channel_id)

    def update_channel(self, channel_id: int, **changes: Any) -> LightningChannel:
        with self.lock:
            current = self._buckets["channels"].get(channel_id)
            if current is None:
                raise NotFound(f"Channel {channel_id} not found")

            if "status" in changes:
                target = ChannelStatus(changes["status"])
                if target != current.status and not current.status.can_transition_to(target):
                    raise InvalidInput(
                        f"Channel {channel_id} cannot move from {current.status.value} to {target.value}"
                    )
                changes["status"] = target

            local_balance = changes.get("local_balance", current.local_balance)
            if not 0 <= local_balance <= current.capacity:
                raise InvalidInput("Channel local balance must be between 0 and capacity")

            return self._update("channels", "Channel", channel_id, changes)

    def list_channels(self, wallet_id: int) -> List[LightningChannel]:
        return self._list_by_wallet("channels", wallet_id, "created_at")

    # ------------------------------------------------------------------
    # Lightning payments
    # ------------------------------------------------------------------

    def create_payment(
        self,
        wallet_id: int,
        type: TransactionType,
        amount: int,
        fee: int,
        payment_hash: str,
        payment_request: str,
        status: PaymentStatus = PaymentStatus.PENDING,
    ) -> LightningPayment:
        with self.lock:
            payment = LightningPayment(
                id=self._allocate_id("payments"),
                wallet_id=wallet_id,
                type=TransactionType(type),
                amount=amount,
                fee=fee,
                payment_hash=payment_hash,
                payment_request=payment_request,
                status=PaymentStatus(status),
            )
            return self._put("payments", payment)

    def get_payment(self, payment_id: int) -> Optional[LightningPayment]:
        with self.lock:
            return self._get("payments", payment_id)

    def get_payment_by_hash(self, wallet_id: int, payment_hash: str) -> Optional[LightningPayment]:
        for payment in self.list_payments(wallet_id):
            if payment.payment_hash == payment_hash:
                return payment
        return None

    def update_payment(self, payment_id: int, **changes: Any) -> LightningPayment:
        if "status" in changes:
            changes["status"] = PaymentStatus(changes["status"])
        return self._update("payments", "Payment", payment_id, changes)

    def list_payments(self, wallet_id: int) -> List[LightningPayment]:
        return self._list_by_wallet("payments", wallet_id, "timestamp")
