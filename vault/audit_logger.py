"""
Audit logging for the demo wallet.

Balance-affecting events and Lightning provider calls are written to the
``audit`` logger as one line each.  Mnemonics never reach this log.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_logger = logging.getLogger("audit")
_audit_logger = None  # Will be initialized by init_audit_logger


def init_audit_logger():
    """Initialize the audit logger."""
    global _audit_logger

    _logger.setLevel(logging.INFO)

    if not _logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - AUDIT - %(levelname)s - %(message)s"))
        _logger.addHandler(handler)

    _audit_logger = AuditLogger()
    _logger.info("Audit logger initialized")


def get_audit_logger():
    """Get the audit logger instance."""
    global _audit_logger

    if _audit_logger is None:
        init_audit_logger()
    return _audit_logger


class AuditLogger:
    """Audit logging interface for ledger events."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or _logger

    def log_event(self, event: str, **details: Any) -> None:
        """Generic structured audit event."""

        payload = {"event": event, **details, "timestamp": datetime.now(timezone.utc).isoformat()}
        self.logger.info(json.dumps(payload, default=str))

    def log_wallet_event(self, action: str, wallet_id: int, address: Optional[str] = None):
        """Log wallet lifecycle (created, restored, cleared, address issued)."""
        msg = f"WALLET | action={action} | wallet={wallet_id}"
        if address:
            msg += f" | address={address}"
        self.logger.info(msg)

    def log_balance_change(self, wallet_id: int, pool: str, before: int, after: int, reason: str):
        """Log a mutation of ``balance`` or ``lightning_balance``."""
        self.logger.info(
            f"BALANCE | wallet={wallet_id} | pool={pool} | before={before} | after={after} "
            f"| delta={after - before} | reason={reason}"
        )

    def log_provider_call(self, provider: str, operation: str, success: bool, error: Optional[str] = None):
        """Log a Lightning provider call."""
        status = "SUCCESS" if success else "FAILURE"
        msg = f"LN_PROVIDER | provider={provider} | op={operation} | status={status}"
        if error:
            msg += f" | error={error}"
        self.logger.info(msg)

    def log_error(self, error_type: str, error_msg: str, context: Optional[Dict[str, Any]] = None):
        """Log application error."""
        msg = f"ERROR | type={error_type} | msg={error_msg}"
        if context:
            msg += f" | context={context}"
        self.logger.error(msg)
