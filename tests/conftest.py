import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import security
from catalog import seed_catalog
from database import create_document, get_db
from main import app
from notifications import NotificationSender
from payments import PaymentGateway

GATEWAY_SECRET = "S"


class RecordingNotifier(NotificationSender):
    def __init__(self):
        self.sent = []

    def send_verification(self, email, name, token):
        self.sent.append(("verification", email, token))

    def send_password_reset(self, email, name, token):
        self.sent.append(("reset", email, token))

    def send_order_confirmation(self, email, name, order):
        self.sent.append(("order", email, order))

    def last(self, kind):
        return [s for s in self.sent if s[0] == kind][-1]


class FailingNotifier(NotificationSender):
    def send_verification(self, email, name, token):
        raise RuntimeError("smtp down")

    def send_password_reset(self, email, name, token):
        raise RuntimeError("smtp down")

    def send_order_confirmation(self, email, name, order):
        raise RuntimeError("smtp down")


class FakeSession:
    """Stands in for a pymongo ClientSession and records what it is asked to do.

    Falsy so mongomock, which refuses real sessions, runs the calls un-sessioned.
    """

    def __init__(self, commit_errors=()):
        self.calls = []
        self.in_transaction = False
        self.commit_errors = list(commit_errors)

    def __bool__(self):
        return False

    def __enter__(self):
        self.calls.append("start_session")
        return self

    def __exit__(self, *exc):
        self.calls.append("end_session")
        return False

    def start_transaction(self):
        self.calls.append("start")
        self.in_transaction = True

    def commit_transaction(self):
        self.calls.append("commit")
        self.in_transaction = False
        if self.commit_errors:
            raise self.commit_errors.pop(0)

    def abort_transaction(self):
        self.calls.append("abort")
        self.in_transaction = False


class FakeGateway(PaymentGateway):
    key_id = "rzp_test_key"
    key_secret = GATEWAY_SECRET

    def __init__(self):
        self.orders = []

    def create_order(self, amount, currency, receipt):
        order = {"id": f"order_{len(self.orders) + 1}", "amount": amount, "currency": currency, "receipt": receipt}
        self.orders.append(order)
        return order


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch):
    monkeypatch.setattr(security, "PBKDF2_ROUNDS", 1000)


@pytest.fixture
def db(monkeypatch):
    monkeypatch.setattr(database, "USE_TRANSACTIONS", False)
    mongo = mongomock.MongoClient()["electronics_hub_test"]
    database.ensure_indexes(mongo)
    return mongo


@pytest.fixture
def sessions(db, monkeypatch):
    """Turn transactions on, handing out FakeSessions instead of real ones."""
    started = []

    def start_session(_database):
        session = FakeSession()
        started.append(session)
        return session

    monkeypatch.setattr(database, "USE_TRANSACTIONS", True)
    monkeypatch.setattr(database, "start_session", start_session)
    return started


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db, notifier, gateway):
    app.dependency_overrides[get_db] = lambda: db
    app.state.notifier = notifier
    app.state.payment_gateway = gateway
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.state.notifier = None
    app.state.payment_gateway = None


def make_user(client, name="Asha", email="asha@example.com", password="secret123"):
    res = client.post("/api/auth/signup", json={"name": name, "email": email, "password": password})
    assert res.status_code == 201, res.text
    data = res.json()["data"]
    token = data["tokens"]["accessToken"]
    return {"id": data["user"]["id"], "email": email, "token": token, "headers": {"Authorization": f"Bearer {token}"}}


def make_address(client, user, **overrides):
    body = {
        "full_name": "Asha Rao",
        "phone": "9876543210",
        "street": "12 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "pincode": "560001",
    }
    body.update(overrides)
    res = client.post("/api/user/addresses", json=body, headers=user["headers"])
    assert res.status_code == 201, res.text
    return res.json()["data"]


@pytest.fixture
def user(client):
    return make_user(client)


@pytest.fixture
def other_user(client):
    return make_user(client, name="Ravi", email="ravi@example.com")


@pytest.fixture
def address(client, user):
    return make_address(client, user)


@pytest.fixture
def products(db):
    ids = {
        "phone": create_document("product", {
            "name": "Pixel 7A", "type": "Smartphone", "description": "Android phone",
            "price": 100.0, "category_key": "mobiles", "stock_quantity": 5, "availability": "In Stock",
        }, db),
        "laptop": create_document("product", {
            "name": "ThinkPad X1", "type": "Laptop", "description": "Business laptop",
            "price": 250.5, "category_key": "laptops", "stock_quantity": 2, "availability": "In Stock",
        }, db),
        "charger": create_document("product", {
            "name": "65W Charger", "type": "Charger", "description": "USB-C fast charger",
            "price": 20.0, "category_key": "accessories", "stock_quantity": 10, "availability": "Out of Stock",
        }, db),
    }
    return ids


@pytest.fixture
def seeded(db):
    seed_catalog(db)
    return db


def stock_of(db, product_id):
    return db["product"].find_one({"_id": database.oid(product_id)})["stock_quantity"]
