"""
Pytest configuration and shared fixtures for the wallet service tests.
"""

import os
import sys
from unittest.mock import MagicMock

import pytest

# Set test environment before importing the app
os.environ["FLASK_ENV"] = "testing"
os.environ["FLASK_SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["LN_BACKEND"] = "stub"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["FAUCET_ENABLED"] = "true"

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from vault.factory import create_app  # noqa: E402
from vault.ledger import WalletService  # noqa: E402
from vault.lightning import Invoice, InvoiceProvider, PaymentResult, encode_invoice  # noqa: E402
from vault.storage import MemoryStore  # noqa: E402

# Signed with a throwaway node key so they decode like real invoices.
NODE_PRIVATE_KEY = "e126f68f7eafcc8b74f54d269fe206be715000f94dac067d1c04a8ca3b2db734"
INVOICE_PAYMENT_HASH = "0001020304050607080900010203040506070809000102030405060708090102"
SAMPLE_INVOICE_SATS = 250_000
SAMPLE_INVOICE = encode_invoice(SAMPLE_INVOICE_SATS, "coffee", INVOICE_PAYMENT_HASH, NODE_PRIVATE_KEY)
SMALL_INVOICE = encode_invoice(1, "tip", INVOICE_PAYMENT_HASH, NODE_PRIVATE_KEY)
AMOUNTLESS_INVOICE = encode_invoice(0, "donation", INVOICE_PAYMENT_HASH, NODE_PRIVATE_KEY)


@pytest.fixture
def store():
    """Fresh record store per test."""
    return MemoryStore()


@pytest.fixture
def provider():
    """Mock Lightning provider honouring the InvoiceProvider contract."""
    mock_provider = MagicMock(spec=InvoiceProvider)
    mock_provider.name = "mock"

    mock_provider.create_invoice.return_value = Invoice(
        payment_hash="a" * 64,
        payment_request=SAMPLE_INVOICE,
    )
    mock_provider.send_payment.return_value = PaymentResult(
        payment_hash="b" * 64,
        preimage="c" * 64,
        status="complete",
        fee=0,
    )
    mock_provider.check_payment_status.return_value = False

    return mock_provider


@pytest.fixture
def mock_audit_logger():
    """Mock audit logger for testing."""
    return MagicMock()


@pytest.fixture
def service(store, provider, mock_audit_logger):
    return WalletService(store=store, provider=provider, audit_logger=mock_audit_logger)


@pytest.fixture
def wallet(service):
    """Freshly created wallet with zero balances."""
    return service.create_wallet()


@pytest.fixture
def funded_wallet(service, store):
    """Wallet holding 100,000 on-chain sats."""
    created = service.create_wallet()
    return store.update_wallet(created.id, balance=100_000)


@pytest.fixture
def lightning_wallet(service, store):
    """Lightning-enabled wallet with 300,000 sats in the Lightning pool."""
    created = service.create_wallet()
    return store.update_wallet(created.id, lightning_enabled=True, lightning_balance=300_000)


@pytest.fixture
def sample_invoice():
    """Signed BOLT11 invoice for 250,000 sats."""
    return SAMPLE_INVOICE


@pytest.fixture
def small_invoice():
    """BOLT11 invoice for 1 sat."""
    return SMALL_INVOICE


@pytest.fixture
def amountless_invoice():
    return AMOUNTLESS_INVOICE


@pytest.fixture
def sample_bitcoin_address():
    """Provide a sample Bitcoin address for testing."""
    return "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"


@pytest.fixture
def app(store, provider):
    """Create a test Flask application bound to the per-test store and provider."""
    flask_app = create_app({"TESTING": True}, store=store, provider=provider)
    flask_app.config.update({"TESTING": True})

    with flask_app.app_context():
        yield flask_app


@pytest.fixture
def client(app):
    """Create a test client for the Flask application."""
    return app.test_client()


# Pytest configuration hooks
def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers automatically."""
    for item in items:
        # Add 'unit' marker to tests in unit/ directory
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        # Add 'integration' marker to tests in integration/ directory
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
