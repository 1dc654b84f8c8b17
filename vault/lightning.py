"""Lightning invoice provider boundary.

The ledger only needs three things from a Lightning backend: create an
invoice, pay an invoice, and ask whether an invoice was paid.  ``LNbitsProvider``
implements that contract on top of a hosted LNbits wallet; ``StubProvider``
fabricates results for local development and demos.
"""

import hashlib
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import requests
from bolt11 import Bolt11, MilliSatoshi, TagChar, Tags
from bolt11 import encode as bolt11_encode

from vault.errors import ProviderFailure, ProviderTimeout

logger = logging.getLogger(__name__)

PAYMENT_COMPLETE = "complete"
PAYMENT_FAILED = "failed"


@dataclass
class Invoice:
    payment_hash: str
    payment_request: str


@dataclass
class PaymentResult:
    """Outcome of an outgoing payment as reported by the provider."""
    payment_hash: str
    preimage: str
    status: str
    fee: int = 0
    error: Optional[str] = None

    @property
    def complete(self) -> bool:
        return self.status == PAYMENT_COMPLETE


class InvoiceProvider:
    """Contract the ledger expects from a Lightning backend."""

    name = "abstract"

    def create_invoice(self, amount_sats: int, memo: str) -> Invoice:
        raise NotImplementedError

    def send_payment(self, payment_request: str) -> PaymentResult:
        """Pay an invoice. Rejections come back as a failed result, not an exception."""
        raise NotImplementedError

    def check_payment_status(self, payment_hash: str) -> bool:
        raise NotImplementedError


class LNbitsProvider(InvoiceProvider):
    """
    LNbits REST backend.

    Invoices are created and paid with the admin key; status lookups use the
    read-only invoice key.  Every request carries an explicit timeout.
    """

    name = "lnbits"

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        admin_key: str,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
    ):
        if not api_key or not admin_key:
            raise ValueError("LNbits configuration missing: LNBITS_API_KEY and LNBITS_ADMIN_KEY are required")
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.admin_key = admin_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self, key: str) -> Dict[str, str]:
        return {"Content-Type": "application/json", "X-Api-Key": key}

    def _request(self, method: str, path: str, key: str, payload: Optional[Dict[str, Any]] = None) -> requests.Response:
        url = f"{self.endpoint}{path}"
        try:
            resp = self.session.request(method, url, json=payload, headers=self._headers(key), timeout=self.timeout)
        except requests.Timeout as exc:
            logger.warning(f"LNbits {method} {path} timed out after {self.timeout}s")
            raise ProviderTimeout(f"Lightning provider did not respond within {self.timeout} seconds") from exc
        except requests.RequestException as exc:
            logger.error(f"LNbits {method} {path} failed: {exc}")
            raise ProviderFailure(f"Lightning provider unreachable: {exc}") from exc

        logger.debug(f"LNbits {method} {path} -> {resp.status_code}")
        return resp

    @staticmethod
    def _json(resp: requests.Response) -> Dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderFailure(f"Invalid response from Lightning provider: {resp.text[:200]}") from exc
        if not isinstance(data, dict):
            raise ProviderFailure("Invalid response format from Lightning provider")
        return data

    @staticmethod
    def _error_detail(resp: requests.Response) -> str:
        message = f"LNbits API error: {resp.status_code}"
        try:
            data = resp.json()
        except ValueError:
            return f"{message} - {resp.text}"
        if isinstance(data, dict) and data.get("detail"):
            return str(data["detail"])
        return f"{message} - {resp.text}"

    def create_invoice(self, amount_sats: int, memo: str) -> Invoice:
        payload = {"out": False, "amount": int(amount_sats), "memo": memo, "unit": "sat"}
        resp = self._request("POST", "/api/v1/payments", self.admin_key, payload)
        if resp.status_code >= 300:
            raise ProviderFailure(f"LNbits invoice create failed: {resp.status_code} {resp.text}")

        data = self._json(resp)
        payment_hash = data.get("payment_hash")
        payment_request = data.get("payment_request") or data.get("bolt11")
        if not payment_hash or not payment_request:
            raise ProviderFailure("LNbits invoice response missing payment_hash or payment_request")

        logger.info(f"Created Lightning invoice {payment_hash} for {amount_sats} sats")
        return Invoice(payment_hash=payment_hash, payment_request=payment_request)

    def send_payment(self, payment_request: str) -> PaymentResult:
        resp = self._request("POST", "/api/v1/payments", self.admin_key, {"out": True, "bolt11": payment_request})
        if resp.status_code >= 300:
            return PaymentResult("", "", PAYMENT_FAILED, error=self._error_detail(resp))

        data = self._json(resp)
        payment_hash = data.get("payment_hash") or ""
        preimage = data.get("payment_preimage") or data.get("preimage") or ""

        if data.get("error"):
            return PaymentResult(payment_hash, preimage, PAYMENT_FAILED, error=str(data["error"]))
        if data.get("paid") is False or data.get("status") in ("failed", "pending"):
            return PaymentResult(payment_hash, preimage, PAYMENT_FAILED, error="Payment not settled")
        if not payment_hash:
            return PaymentResult("", preimage, PAYMENT_FAILED, error="LNbits payment response missing payment_hash")

        # LNbits reports routing fees in msat, negative for outgoing payments.
        fee_msat = data.get("fee") or 0
        try:
            fee = abs(int(fee_msat)) // 1000
        except (TypeError, ValueError):
            # The payment already went through; record it rather than fail the request.
            logger.warning(f"LNbits payment {payment_hash} reported unreadable fee {fee_msat!r}; recording fee 0")
            fee = 0

        logger.info(f"Lightning payment {payment_hash} complete (fee {fee} sats)")
        return PaymentResult(payment_hash, preimage, PAYMENT_COMPLETE, fee=fee)

    def check_payment_status(self, payment_hash: str) -> bool:
        resp = self._request("GET", f"/api/v1/payments/{payment_hash}", self.api_key)
        if resp.status_code >= 300:
            raise ProviderFailure(f"LNbits payment lookup failed: {resp.status_code} {resp.text}")
        return self._json(resp).get("paid") is True


def encode_invoice(amount_sats: int, memo: str, payment_hash: str, private_key: str, currency: str = "bc") -> str:
    """
    Build and sign a BOLT11 invoice.

    ``amount_sats`` of 0 produces an amountless invoice.  ``private_key`` is a
    hex secp256k1 secret; the node behind it does not need to exist.
    """
    tags = Tags()
    tags.add(TagChar.payment_hash, payment_hash)
    tags.add(TagChar.payment_secret, secrets.token_hex(32))
    tags.add(TagChar.description, memo or "")
    invoice = Bolt11(
        currency=currency,
        amount_msat=MilliSatoshi(int(amount_sats) * 1000) if amount_sats else None,
        date=int(time.time()),
        tags=tags,
    )
    return bolt11_encode(invoice, private_key)


class StubProvider(InvoiceProvider):
    """
    In-process backend for development.

    Invoices are real, signed BOLT11 strings for a throwaway node key; every
    payment completes; ``paid_hashes`` decides what ``check_payment_status``
    reports.
    """

    name = "stub"

    def __init__(self, private_key: Optional[str] = None):
        self.private_key = private_key or secrets.token_hex(32)
        self.paid_hashes = set()

    def create_invoice(self, amount_sats: int, memo: str) -> Invoice:
        preimage = secrets.token_bytes(32)
        payment_hash = hashlib.sha256(preimage).hexdigest()
        payment_request = encode_invoice(amount_sats, memo, payment_hash, self.private_key)
        logger.info(f"Created stub Lightning invoice {payment_hash} for {amount_sats} sats")
        return Invoice(payment_hash=payment_hash, payment_request=payment_request)

    def send_payment(self, payment_request: str) -> PaymentResult:
        payment_hash = secrets.token_hex(32)
        self.paid_hashes.add(payment_hash)
        return PaymentResult(payment_hash, secrets.token_hex(32), PAYMENT_COMPLETE)

    def check_payment_status(self, payment_hash: str) -> bool:
        return payment_hash in self.paid_hashes


def get_provider(cfg: Mapping[str, Any]) -> InvoiceProvider:
    """Build the provider selected by ``LN_BACKEND``."""
    backend = str(cfg.get("LN_BACKEND") or "stub").lower()
    if backend == "lnbits":
        return LNbitsProvider(
            endpoint=cfg.get("LNBITS_ENDPOINT") or "https://legend.lnbits.com",
            api_key=cfg.get("LNBITS_API_KEY") or "",
            admin_key=cfg.get("LNBITS_ADMIN_KEY") or "",
            timeout=cfg.get("LNBITS_TIMEOUT") or 10,
        )
    if backend == "stub":
        logger.info("Lightning provider: stub (set LN_BACKEND=lnbits for a real backend)")
        return StubProvider()
    raise ValueError(f"Unknown LN_BACKEND {backend!r} (expected 'lnbits' or 'stub')")
