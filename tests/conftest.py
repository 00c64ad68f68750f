import hashlib
import hmac
from itertools import count
from types import SimpleNamespace

import mongomock
import pytest
from fastapi.testclient import TestClient
from razorpay.errors import BadRequestError
from razorpay.utility import Utility

import database
from auth import hash_password
from config import Config
from gateway import RazorpayGateway, get_gateway
from main import app

OWNER_EMAIL = "owner@salon.example.com"
OWNER_PASSWORD = "owner-secret-1"
KEY_ID = "rzp_test_key"
KEY_SECRET = "rzp_test_secret"


class FakeRazorpay:
    """Stands in for razorpay.Client: records calls, returns gateway-shaped dicts."""

    def __init__(self):
        self._ids = count(1)
        self.orders = []
        self.links = []
        self.payments = {}
        self.order = SimpleNamespace(create=self._create_order)
        self.payment_link = SimpleNamespace(create=self._create_link)
        self.payment = SimpleNamespace(fetch=self._fetch)
        self.auth = (KEY_ID, KEY_SECRET)
        self.utility = Utility(self)

    def _create_order(self, data):
        self.orders.append(data)
        return {"id": f"order_{next(self._ids)}", "amount": data["amount"], "currency": data["currency"],
                "receipt": data["receipt"], "status": "created"}

    def _create_link(self, data):
        self.links.append(data)
        n = next(self._ids)
        return {"id": f"plink_{n}", "amount": data["amount"], "short_url": f"https://rzp.io/i/link{n}"}

    def _fetch(self, payment_id):
        if payment_id not in self.payments:
            raise BadRequestError("The id provided does not exist")
        return self.payments[payment_id]


@pytest.fixture
def db(monkeypatch):
    mock = mongomock.MongoClient().salon_test
    monkeypatch.setattr(database, "db", mock)
    return mock


@pytest.fixture
def razorpay_client():
    return FakeRazorpay()


@pytest.fixture
def gateway(razorpay_client):
    gw = RazorpayGateway(KEY_ID, KEY_SECRET, client=razorpay_client)
    app.dependency_overrides[get_gateway] = lambda: gw
    yield gw
    app.dependency_overrides.pop(get_gateway, None)


@pytest.fixture
def client(db, gateway, monkeypatch):
    monkeypatch.setattr(Config, "OWNER_EMAIL", OWNER_EMAIL)
    monkeypatch.setattr(Config, "OWNER_PASSWORD", OWNER_PASSWORD)
    with TestClient(app) as c:
        yield c


def add_user(db, email, role, password="staff-pass-1", name=None, active=True):
    return database.create_document("user", {
        "name": name or email.split("@")[0].title(),
        "email": email,
        "password_hash": hash_password(password),
        "role": role,
        "created_by": None,
        "is_active": active,
    })


def add_service(db, name, price, category="Hair", active=True):
    return database.create_document("service", {
        "name": name, "name_key": name.casefold(), "price": price, "category": category, "is_active": active,
    })


def add_artist(db, name, phone, commission=0, user_id=None, active=True):
    return database.create_document("artist", {
        "name": name, "phone": phone, "email": None, "registration_id": None, "commission": commission,
        "photo": None, "user_id": user_id, "is_active": active,
    })


def login(client, email, password):
    res = client.post("/api/auth/login", json={"email": email, "password": password})
    assert res.status_code == 200, res.text
    return res.json()


def login_owner(client):
    return login(client, OWNER_EMAIL, OWNER_PASSWORD)


def sign(payload, secret=KEY_SECRET):
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()


def order_signature(order_id, payment_id):
    return sign(f"{order_id}|{payment_id}")


@pytest.fixture
def owner(client):
    return login_owner(client)


@pytest.fixture
def receptionist(client, db):
    add_user(db, "desk@salon.example.com", "receptionist", name="Desk")
    return login(client, "desk@salon.example.com", "staff-pass-1")
