import pytest
from fastapi.testclient import TestClient

from storefront.auth import hash_password
from storefront.config import Settings, SmtpSettings, StripeSettings
from storefront.main import create_app
from storefront.models import Customer, Order, OrderStatus, Transaction, TransactionStatus, User, Widget, utcnow


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        stripe=StripeSettings(secret="sk_test_123", key="pk_test_123", currency="eur"),
        smtp=SmtpSettings(host="smtp.test", port=587, username="mailer", password="secret"),
        secret_key="test-secret-key",
        frontend_url="http://localhost:4000",
        invoice_dir=tmp_path / "invoices",
    )


@pytest.fixture
def fastapi_app(settings):
    app = create_app(settings)
    yield app
    app.dependency_overrides.clear()
    app.state.engine.dispose()


@pytest.fixture
def client(fastapi_app):
    with TestClient(fastapi_app) as c:
        yield c


@pytest.fixture
def repository(fastapi_app):
    return fastapi_app.state.repository


@pytest.fixture
def db(repository):
    session = repository.session_factory()
    yield session
    session.close()


@pytest.fixture
def widget(db):
    w = Widget(id=1, name="Widget", description="A very nice widget.", inventory_level=10, price=1000)
    db.add(w)
    db.commit()
    return w


@pytest.fixture
def plan_widget(db):
    w = Widget(id=2, name="Bronze Plan", price=2000, is_recurring=True, plan_id="price_bronze")
    db.add(w)
    db.commit()
    return w


@pytest.fixture
def make_order(db):
    """Insert a purchased order (with its customer and transaction) and return it."""

    def _make(widget_id=1, amount=1000, payment_intent="pi_123", status=OrderStatus.PURCHASED, created_at=None):
        customer = Customer(first_name="Jane", last_name="Doe", email="jane@example.com")
        txn = Transaction(
            amount=amount,
            currency="eur",
            last_four="4242",
            expiry_month=12,
            expiry_year=2030,
            payment_intent=payment_intent,
            payment_method="pm_123",
            bank_return_code="ch_123",
            transaction_status_id=int(TransactionStatus.CLEARED),
        )
        db.add_all([customer, txn])
        db.flush()
        created_at = created_at or utcnow()
        order = Order(
            widget_id=widget_id,
            transaction_id=txn.id,
            customer_id=customer.id,
            status_id=int(status),
            quantity=1,
            amount=amount,
            created_at=created_at,
            updated_at=created_at,
        )
        db.add(order)
        db.commit()
        return order

    return _make


@pytest.fixture
def admin_user(db):
    user = User(first_name="Admin", last_name="User", email="admin@example.com", password=hash_password("password"))
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def auth_headers(client, admin_user):
    response = client.post("/api/authenticate", json={"email": "admin@example.com", "password": "password"})
    token = response.json()["content"]["authentication_token"]["token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def stripe_card(mocker):
    """Patch the Stripe lookups used when recording a completed payment."""
    intent = mocker.Mock()
    intent.id = "pi_123"
    intent.latest_charge = "ch_123"
    method = mocker.Mock()
    method.card.last4 = "4242"
    method.card.exp_month = 12
    method.card.exp_year = 2030
    mocker.patch("stripe.PaymentIntent.retrieve", return_value=intent)
    mocker.patch("stripe.PaymentMethod.retrieve", return_value=method)
    return intent, method

