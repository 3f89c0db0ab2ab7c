"""
Pytest fixtures for fulfillment backend tests.

Provides an in-memory application per test, seeded roles and permissions,
one user (and bearer headers) per department role, and order builders.
"""

import pytest

from fulfillment import create_app
from fulfillment.extensions import db
from fulfillment.models import Carrier, Order, Product
from fulfillment.permissions import DEFAULT_ROLES
from fulfillment.services import delivery_service, order_service, permission_service, session_service
from fulfillment.services.auth_service import create_default_roles, create_user, assign_role


TEST_PASSWORD = "Password123!"
LOCAL_CARRIER_ID = 32


@pytest.fixture(scope='function')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'EVENT_SINK': 'memory',
        'LOCAL_COURIER_CARRIER_ID': LOCAL_CARRIER_ID,
    })

    with app.app_context():
        db.create_all()
        create_default_roles()
        permission_service.initialize_permissions()
        permission_service.assign_default_role_permissions()
        db.session.add(Carrier(id=LOCAL_CARRIER_ID, name="Mensajeria local", code="MENSAJERIA_LOCAL"))
        db.session.add(Carrier(name="Servientrega", code="SERVIENTREGA"))
        db.session.commit()

        yield app

        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def events_sink(app):
    """In-memory event sink (EVENT_SINK=memory)."""
    return app.extensions["event_sink"]


@pytest.fixture(scope='function')
def users(app):
    """One active user per department role, keyed by role name."""
    created = {}
    for role_name, _ in DEFAULT_ROLES:
        user = create_user(
            username=role_name,
            email=f"{role_name}@fulfillment.test",
            password=TEST_PASSWORD,
            full_name=role_name.capitalize(),
            rounds=4,
        )
        assign_role(user.id, role_name)
        created[role_name] = user
    return created


@pytest.fixture(scope='function')
def headers(users):
    """Bearer headers per role name."""
    result = {}
    for role_name, user in users.items():
        _, token = session_service.create_session(user.id)
        result[role_name] = auth_headers(token)
    return result


@pytest.fixture(scope='function')
def product(app):
    product = Product(name="Queso campesino 500g", barcode="7700000000011", internal_code="QC500")
    db.session.add(product)
    db.session.commit()
    return product


@pytest.fixture(scope='function')
def make_order(users):
    """
    Factory: create an order through the service as the billing user.

    status= forces a starting status for tests that begin mid-workflow.
    """
    def _make(status=None, items=None, **fields):
        payload = {
            "customer_name": "Ana Perez",
            "customer_phone": "3001234567",
            "customer_address": "Calle 10 # 20-30",
            "customer_department": "Antioquia",
            "customer_city": "Medellin",
            "delivery_method": "domicilio_ciudad",
            "payment_method": "efectivo",
            "items": items if items is not None else [
                {"name": "Queso campesino 500g", "quantity": 2, "unit_price_cents": 1_500_000},
            ],
        }
        payload.update(fields)
        order = order_service.create_order(payload, user_id=users["facturador"].id)
        if status is not None:
            order.status = status
            db.session.commit()
        return order

    return _make


@pytest.fixture(scope='function')
def deliver_order(make_order, users):
    """
    Factory: walk an order through courier assignment and delivery.

    Returns the delivered order; the courier collected `payment` cents.
    """
    def _deliver(payment=3_000_000, fee=0, **fields):
        order = make_order(status="listo_para_entrega", **fields)
        messenger = users["mensajero"]
        order_service.assign_messenger(order.id, messenger.id, user_id=users["logistica"].id)
        delivery_service.accept_order(order.id, messenger_id=messenger.id)
        delivery_service.start_delivery(order.id, messenger_id=messenger.id)
        return delivery_service.complete_delivery(order.id, messenger_id=messenger.id, payload={
            "payment_collected_cents": payment,
            "delivery_fee_collected_cents": fee,
            "payment_method": "efectivo",
        })

    return _deliver


def reload_order(order_id: int) -> Order:
    db.session.expire_all()
    return db.session.get(Order, order_id)


def get_auth_token(client, username: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
