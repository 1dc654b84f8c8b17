"""
Admin Blueprint - Health Checks, Metrics, and Operational Endpoints

Provides monitoring and operational endpoints for the wallet service.
"""

import logging
import time
from typing import Any, Dict

from flask import Blueprint, Response, current_app, jsonify, request
from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

from vault.factory import get_service

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__)

# Prometheus metrics
registry = CollectorRegistry()
request_counter = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
    registry=registry
)
onchain_balance = Gauge(
    "wallet_onchain_balance_sats",
    "On-chain balance of the provisioned wallet",
    registry=registry
)
lightning_balance = Gauge(
    "wallet_lightning_balance_sats",
    "Lightning balance of the provisioned wallet",
    registry=registry
)


@admin_bp.after_app_request
def count_request(response):
    request_counter.labels(
        method=request.method,
        endpoint=request.url_rule.rule if request.url_rule else "unmatched",
        status=response.status_code,
    ).inc()
    return response


def _app_info() -> Dict[str, Any]:
    cfg = current_app.config.get("APP_CONFIG", {})
    return {"name": cfg.get("APP_NAME", "BitcoinVault"), "version": cfg.get("APP_VERSION", "1.0.0")}


@admin_bp.route("/health")
def health():
    """
    Health check endpoint.

    Returns:
        JSON health status with service information
    """
    service = get_service()
    wallet = service.store.first_wallet()
    info = _app_info()
    return jsonify({
        "status": "healthy",
        "timestamp": time.time(),
        "service": info["name"],
        "version": info["version"],
        "components": {
            "store": {"status": "ok", "wallet_provisioned": wallet is not None},
            "lightning_provider": {"status": "configured", "backend": service.provider.name},
        },
    }), 200


@admin_bp.route("/health/live")
def liveness():
    """
    Kubernetes liveness probe - checks if app is running.

    Returns:
        200 if process is alive
    """
    return jsonify({"status": "alive"}), 200


@admin_bp.route("/health/ready")
def readiness():
    """Ready once the wallet service is bound to the app."""
    if "wallet_service" not in current_app.extensions:
        return jsonify({"status": "not_ready"}), 503
    return jsonify({"status": "ready"}), 200


@admin_bp.route("/metrics")
def metrics_json():
    """
    JSON metrics endpoint for monitoring.

    Returns:
        JSON metrics data
    """
    service = get_service()
    wallet = service.store.first_wallet()

    metrics_data: Dict[str, Any] = {
        "timestamp": time.time(),
        "application": {**_app_info(), "uptime": time.process_time()},
        "metrics": {"wallet_provisioned": wallet is not None},
    }
    if wallet is not None:
        metrics_data["metrics"].update({
            "balance": wallet.balance,
            "lightning_balance": wallet.lightning_balance,
            "lightning_enabled": wallet.lightning_enabled,
            "transactions": len(service.store.list_transactions(wallet.id)),
            "channels": len(service.store.list_channels(wallet.id)),
            "lightning_payments": len(service.store.list_payments(wallet.id)),
        })
    return jsonify(metrics_data), 200


@admin_bp.route("/metrics/prometheus")
def metrics_prometheus():
    """
    Prometheus metrics endpoint.

    Returns:
        Prometheus text format metrics
    """
    wallet = get_service().store.first_wallet()
    onchain_balance.set(wallet.balance if wallet else 0)
    lightning_balance.set(wallet.lightning_balance if wallet else 0)

    metrics = generate_latest(registry)
    return Response(metrics, mimetype="text/plain; version=0.0.4")
