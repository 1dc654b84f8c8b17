"""
Application Factory for the demo Bitcoin/Lightning wallet

Implements the Flask application factory pattern with:
- Blueprint registration
- Explicitly constructed record store and Lightning provider
- Security configuration (headers, rate limiting)
- JSON error handling
"""

import logging
from typing import Optional

from flask import Flask, current_app, jsonify, request

from vault.audit_logger import get_audit_logger, init_audit_logger
from vault.config import AppConfig, get_config, validate_config
from vault.errors import WalletError
from vault.ledger import WalletService
from vault.lightning import InvoiceProvider, get_provider
from vault.security import init_security
from vault.storage import MemoryStore

logger = logging.getLogger(__name__)


def create_app(
    config_override: Optional[AppConfig] = None,
    store: Optional[MemoryStore] = None,
    provider: Optional[InvoiceProvider] = None,
) -> Flask:
    """
    Create and configure the Flask application using the factory pattern.

    Args:
        config_override: Optional configuration override for testing
        store: Record store to serve from; a fresh one if omitted
        provider: Lightning provider; chosen by LN_BACKEND if omitted

    Returns:
        Configured Flask application instance
    """
    app = Flask(__name__)

    cfg = get_config()
    if config_override:
        cfg.update(config_override)
    validate_config(cfg)
    app.config["APP_CONFIG"] = cfg
    app.secret_key = cfg.get("FLASK_SECRET_KEY")

    init_security(app, cfg)
    init_audit_logger()

    service = WalletService(
        store=store if store is not None else MemoryStore(),
        provider=provider if provider is not None else get_provider(cfg),
        audit_logger=get_audit_logger(),
    )
    app.extensions["wallet_service"] = service
    logger.info(f"Wallet service ready (lightning provider: {service.provider.name})")

    register_blueprints(app)
    register_error_handlers(app)

    logger.info("🚀 Application factory completed successfully")
    return app


def get_service() -> WalletService:
    """Wallet service bound to the current app."""
    return current_app.extensions["wallet_service"]


def register_blueprints(app: Flask) -> None:
    """Register all application blueprints."""

    # Wallet and on-chain operations
    from vault.blueprints.wallet import wallet_bp
    app.register_blueprint(wallet_bp, url_prefix="/api")

    # Lightning operations
    from vault.blueprints.lightning import lightning_bp
    app.register_blueprint(lightning_bp, url_prefix="/api/wallet")

    # Admin/operations blueprint (health, metrics)
    from vault.blueprints.admin import admin_bp
    app.register_blueprint(admin_bp)

    logger.info("✅ All blueprints registered")


def register_error_handlers(app: Flask) -> None:
    """Register global error handlers."""

    @app.errorhandler(WalletError)
    def wallet_error(e: WalletError):
        if e.status_code >= 500:
            logger.warning(f"{e.error_code.value}: {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({"error": "bad_request", "message": getattr(e, "description", str(e))}), 400

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "not_found", "message": "Resource not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "method_not_allowed", "message": "Method not allowed"}), 405

    @app.errorhandler(429)
    def rate_limit_exceeded(e):
        return jsonify({"error": "rate_limit_exceeded", "message": str(e)}), 429

    @app.errorhandler(500)
    def internal_error(e):
        original = getattr(e, "original_exception", None) or e
        logger.error(f"Internal server error: {original}", exc_info=True)
        get_audit_logger().log_error(type(original).__name__, str(original), {"path": request.path})
        return jsonify({"error": "internal_error", "message": "An unexpected error occurred"}), 500
