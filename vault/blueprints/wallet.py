"""
Wallet Blueprint - Wallet Lifecycle and On-chain Operations

Create/restore the single wallet, read it, list its transactions, issue
receiving addresses and send mock on-chain payments.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from vault import utils
from vault.factory import get_service
from vault.security import limiter

logger = logging.getLogger(__name__)

wallet_bp = Blueprint("wallet", __name__)

WALLET_RATE_LIMIT = "30 per minute"
READ_RATE_LIMIT = "120 per minute"


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@wallet_bp.route("/wallet", methods=["POST"])
@limiter.limit(WALLET_RATE_LIMIT)
def create_wallet():
    """
    Create a brand new wallet, discarding any existing one.

    Returns:
        JSON wallet record (includes the recovery phrase)
    """
    wallet = get_service().replace_wallet()
    return jsonify(wallet.to_dict())


@wallet_bp.route("/wallet/restore", methods=["POST"])
@limiter.limit(WALLET_RATE_LIMIT)
def restore_wallet():
    """
    Restore a wallet from a 12-word recovery phrase.

    Expected JSON body:
        - mnemonic: recovery phrase

    Returns:
        JSON wallet record; 409 if a wallet already exists
    """
    data = _json_body()
    wallet = get_service().restore_wallet(data.get("mnemonic"))
    return jsonify(wallet.to_dict())


@wallet_bp.route("/wallet/<int:wallet_id>", methods=["GET"])
@limiter.limit(READ_RATE_LIMIT)
def get_wallet(wallet_id: int):
    return jsonify(get_service().get_wallet(wallet_id).to_dict())


@wallet_bp.route("/wallet/<int:wallet_id>/transactions", methods=["GET"])
@limiter.limit(READ_RATE_LIMIT)
def list_transactions(wallet_id: int):
    """On-chain transactions, newest first."""
    transactions = get_service().list_transactions(wallet_id)
    return jsonify([tx.to_dict() for tx in transactions])


@wallet_bp.route("/wallet/<int:wallet_id>/send", methods=["POST"])
@limiter.limit(WALLET_RATE_LIMIT)
def send(wallet_id: int):
    """
    Send a mock on-chain payment.

    Expected JSON body:
        - address: destination address
        - amount: sats to send
        - fee: sats (optional, estimated when omitted)

    Returns:
        JSON pending transaction
    """
    data = _json_body()
    amount = utils.parse_amount(data.get("amount"), "amount")
    fee = utils.parse_optional_amount(data.get("fee"), "fee")

    tx = get_service().send_onchain(wallet_id, data.get("address"), amount, fee)
    logger.info(f"Wallet {wallet_id} sent {tx.amount} sats (fee {tx.fee}) as tx {tx.id}")
    return jsonify(tx.to_dict())


@wallet_bp.route("/wallet/<int:wallet_id>/address", methods=["POST"])
@limiter.limit(WALLET_RATE_LIMIT)
def new_address(wallet_id: int):
    """Issue a fresh receiving address."""
    wallet = get_service().new_address(wallet_id)
    return jsonify({"current_address": wallet.current_address, "addresses": wallet.addresses})


@wallet_bp.route("/wallet/<int:wallet_id>/receive", methods=["POST"])
@limiter.limit(WALLET_RATE_LIMIT)
def faucet(wallet_id: int):
    """
    Credit test coins to the wallet (development only).

    Expected JSON body:
        - amount: sats to credit
        - address: one of the wallet's addresses (optional)
    """
    cfg = current_app.config.get("APP_CONFIG", {})
    if not cfg.get("FAUCET_ENABLED"):
        return jsonify({"error": "forbidden", "message": "Faucet is disabled"}), 403

    data = _json_body()
    amount = utils.parse_amount(data.get("amount"), "amount")
    tx = get_service().receive_onchain(wallet_id, amount, data.get("address"))
    return jsonify(tx.to_dict())


@wallet_bp.route("/fee-estimate", methods=["GET"])
@limiter.limit(READ_RATE_LIMIT)
def fee_estimate():
    """
    Estimate the on-chain fee for an amount.

    Query parameters:
        - amount: sats
    """
    amount = utils.parse_amount(request.args.get("amount"), "amount")
    return jsonify({"amount": amount, "fee": get_service().estimate_fee(amount)})
