"""
Record types for the wallet ledger.

The wallet is the root aggregate: transactions, channels and Lightning
payments reference it by ``wallet_id`` and have no meaning without it.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List


def utc_now() -> datetime:
    """Generate timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class TransactionType(Enum):
    SEND = "send"
    RECEIVE = "receive"


class TransactionStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


class ChannelStatus(Enum):
    """Lifecycle of a Lightning channel, in order. No back-transitions."""
    OPENING = "opening"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"

    def can_transition_to(self, target: "ChannelStatus") -> bool:
        order = list(ChannelStatus)
        return order.index(target) > order.index(self)


class PaymentStatus(Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def _serialize(record: Any) -> Dict[str, Any]:
    data = asdict(record)
    for key, value in data.items():
        if isinstance(value, Enum):
            data[key] = value.value
        elif isinstance(value, datetime):
            data[key] = value.isoformat()
    return data


@dataclass
class Wallet:
    """
    Single-tenant wallet.

    - mnemonic          : 12-word recovery phrase, never changes
    - current_address   : address handed out for receiving
    - addresses         : every address ever issued, oldest first
    - balance           : on-chain pool in sats
    - lightning_balance : Lightning pool in sats, separate from ``balance``
    """
    id: int
    mnemonic: str
    current_address: str
    addresses: List[str] = field(default_factory=list)
    balance: int = 0
    lightning_enabled: bool = False
    lightning_balance: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)


@dataclass
class Transaction:
    """On-chain ledger entry."""
    id: int
    wallet_id: int
    type: TransactionType
    address: str
    amount: int
    fee: int = 0
    status: TransactionStatus = TransactionStatus.PENDING
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)


@dataclass
class LightningChannel:
    id: int
    wallet_id: int
    remote_node_id: str
    capacity: int
    local_balance: int
    status: ChannelStatus = ChannelStatus.OPENING
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)


@dataclass
class LightningPayment:
    id: int
    wallet_id: int
    type: TransactionType
    amount: int
    fee: int
    payment_hash: str
    payment_request: str
    status: PaymentStatus = PaymentStatus.PENDING
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)
