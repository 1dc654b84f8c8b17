"""
Lightning Blueprint - Invoices, Payments and Channels

Every route here is scoped to a wallet: ``/api/wallet/<id>/lightning/...``.
Invoice and payment calls go out to the configured Lightning provider.
"""

import logging

from flask import Blueprint, jsonify, request

from vault import utils
from vault.errors import InvalidInput
from vault.factory import get_service
from vault.security import limiter

logger = logging.getLogger(__name__)

lightning_bp = Blueprint("lightning", __name__)

LIGHTNING_RATE_LIMIT = "20 per minute"
READ_RATE_LIMIT = "120 per minute"


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@lightning_bp.route("/<int:wallet_id>/lightning/toggle", methods=["POST"])
@limiter.limit(LIGHTNING_RATE_LIMIT)
def toggle(wallet_id: int):
    """
    Enable or disable Lightning for the wallet.

    Expected JSON body:
        - enabled: bool
    """
    enabled = _json_body().get("enabled")
    if not isinstance(enabled, bool):
        raise InvalidInput("enabled must be true or false")
    wallet = get_service().set_lightning_enabled(wallet_id, enabled)
    return jsonify(wallet.to_dict())


@lightning_bp.route("/<int:wallet_id>/lightning/invoice", methods=["POST"])
@limiter.limit(LIGHTNING_RATE_LIMIT)
def create_invoice(wallet_id: int):
    """
    Create a Lightning invoice to receive sats.

    Expected JSON body:
        - amount: sats
        - memo: description (optional)

    Returns:
        JSON with payment_hash and payment_request
    """
    data = _json_body()
    amount = utils.parse_amount(data.get("amount"), "amount")
    memo = data.get("memo") or ""
    if not isinstance(memo, str):
        raise InvalidInput("memo must be a string")

    payment = get_service().create_invoice(wallet_id, amount, memo)
    return jsonify({
        "payment_hash": payment.payment_hash,
        "payment_request": payment.payment_request,
    })


@lightning_bp.route("/<int:wallet_id>/lightning/invoice/<payment_hash>", methods=["GET"])
@limiter.limit(READ_RATE_LIMIT)
def invoice_status(wallet_id: int, payment_hash: str):
    """Ask the provider whether an invoice this wallet issued has been paid."""
    paid = get_service().check_invoice(wallet_id, payment_hash)
    return jsonify({"payment_hash": payment_hash, "paid": paid})


@lightning_bp.route("/<int:wallet_id>/lightning/pay", methods=["POST"])
@limiter.limit(LIGHTNING_RATE_LIMIT)
def pay_invoice(wallet_id: int):
    """
    Pay a BOLT11 invoice.

    Expected JSON body:
        - payment_request: invoice string

    Returns:
        JSON succeeded payment record
    """
    data = _json_body()
    payment = get_service().pay_invoice(wallet_id, data.get("payment_request"))
    logger.info(f"Wallet {wallet_id} paid invoice {payment.payment_hash} ({payment.amount} sats)")
    return jsonify(payment.to_dict())


@lightning_bp.route("/<int:wallet_id>/lightning/payments", methods=["GET"])
@limiter.limit(READ_RATE_LIMIT)
def list_payments(wallet_id: int):
    payments = get_service().list_payments(wallet_id)
    return jsonify([payment.to_dict() for payment in payments])


@lightning_bp.route("/<int:wallet_id>/lightning/channels", methods=["GET"])
@limiter.limit(READ_RATE_LIMIT)
def list_channels(wallet_id: int):
    channels = get_service().list_channels(wallet_id)
    return jsonify([channel.to_dict() for channel in channels])


@lightning_bp.route("/<int:wallet_id>/lightning/channels", methods=["POST"])
@limiter.limit(LIGHTNING_RATE_LIMIT)
def open_channel(wallet_id: int):
    """
    Open a channel funded from the on-chain balance.

    Expected JSON body:
        - capacity: sats taken from the on-chain balance
        - local_balance: sats credited to the Lightning balance (optional, defaults to capacity)
    """
    data = _json_body()
    capacity = utils.parse_amount(data.get("capacity"), "capacity")
    local_balance = utils.parse_optional_amount(data.get("local_balance"), "local_balance")

    channel = get_service().open_channel(wallet_id, capacity, local_balance)
    return jsonify(channel.to_dict())
