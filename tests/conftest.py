import os

# Avant l'import de l'app: pas de Redis ni de secrets réels en tests
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")
os.environ.pop("LOCAL_RATE_LIMIT_FALLBACK", None)

import itertools
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Generator, List, Optional

import pytest
from fastapi.testclient import TestClient

from academy.app import app as fastapi_app
from academy.utils.security import require_user
from academy.payments.errors import PaymentProviderError

TEST_USER: Dict[str, Any] = {"id": "test-user", "email": "test@example.com", "token": "fake-token"}

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)

# --- Supabase en mémoire ---

class FakeAPIError(Exception):
    pass

class FakeResponse:
    def __init__(self, data: List[Dict[str, Any]]):
        self.data = data

# Contraintes d'unicité reproduites depuis le schéma
UNIQUE_KEYS = {
    "payments": ("provider_payment_id",),
    "user_access": ("user_id", "product_id"),
    "subscriptions": ("user_id", "plan_id"),
    "download_tokens": ("token",),
    "video_progress": ("user_id", "lesson_id"),
}

class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self._db = db
        self._table = table
        self._op = "select"
        self._payload: Any = None
        self._filters: List[tuple] = []
        self._limit: Optional[int] = None
        self._order: Optional[tuple] = None
        self._on_conflict: Optional[str] = None
        self._ignore_duplicates = False

    def select(self, *columns, **kwargs):
        self._op = "select"
        return self

    def insert(self, payload):
        self._op, self._payload = "insert", payload
        return self

    def update(self, changes):
        self._op, self._payload = "update", changes
        return self

    def upsert(self, payload, on_conflict: str = "", ignore_duplicates: bool = False, **kwargs):
        self._op, self._payload = "upsert", payload
        self._on_conflict = on_conflict
        self._ignore_duplicates = ignore_duplicates
        return self

    def eq(self, column, value):
        self._filters.append((column, value))
        return self

    def order(self, column, desc: bool = False):
        self._order = (column, desc)
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    def _matches(self, row):
        return all(row.get(c) == v for c, v in self._filters)

    def execute(self) -> FakeResponse:
        if (self._table, self._op) in self._db.failures:
            raise FakeAPIError(f"simulated failure on {self._op} {self._table}")
        rows = self._db.tables.setdefault(self._table, [])

        if self._op == "select":
            found = [dict(r) for r in rows if self._matches(r)]
            if self._order:
                col, desc = self._order
                found.sort(key=lambda r: r.get(col) or "", reverse=desc)
            if self._limit is not None:
                found = found[: self._limit]
            return FakeResponse(found)

        if self._op == "update":
            updated = []
            for r in rows:
                if self._matches(r):
                    r.update(self._payload)
                    updated.append(dict(r))
            return FakeResponse(updated)

        payloads = self._payload if isinstance(self._payload, list) else [self._payload]
        out = []
        for payload in payloads:
            if self._op == "upsert":
                keys = tuple(k.strip() for k in (self._on_conflict or "id").split(","))
                existing = self._db.find(self._table, {k: payload.get(k) for k in keys})
                if existing is not None:
                    if self._ignore_duplicates:
                        continue
                    existing.update(payload)
                    out.append(dict(existing))
                    continue
            out.append(self._db.add(self._table, payload))
        return FakeResponse(out)

class FakeSupabase:
    """Client Supabase minimal: table().select/insert/update/upsert().eq().limit().execute()."""

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.failures = set()
        self._clock = itertools.count()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def fail_on(self, table: str, op: str) -> None:
        self.failures.add((table, op))

    def find(self, table: str, criteria: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        for r in self.tables.get(table, []):
            if all(r.get(k) == v for k, v in criteria.items()):
                return r
        return None

    def add(self, table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        keys = UNIQUE_KEYS.get(table)
        if keys and self.find(table, {k: payload.get(k) for k in keys}) is not None:
            raise FakeAPIError(f"duplicate key value violates unique constraint on {table}")
        row = dict(payload)
        row.setdefault("id", str(uuid.uuid4()))
        # horodatage strictement croissant pour les tris
        created = datetime(2025, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=next(self._clock))
        row.setdefault("created_at", created.isoformat())
        self.tables.setdefault(table, []).append(row)
        return dict(row)

    def seed(self, table: str, *rows: Dict[str, Any]) -> None:
        for r in rows:
            self.add(table, r)

    def rows(self, table: str, **criteria) -> List[Dict[str, Any]]:
        return [dict(r) for r in self.tables.get(table, []) if all(r.get(k) == v for k, v in criteria.items())]

@pytest.fixture(autouse=True)
def db(monkeypatch) -> FakeSupabase:
    """Remplace les clients Supabase (anon et service) par un store en mémoire."""
    fake = FakeSupabase()
    monkeypatch.setattr("academy.infra.supabase_client.get_service_supabase", lambda: fake)
    monkeypatch.setattr("academy.infra.supabase_client.get_supabase", lambda: fake)
    return fake

@pytest.fixture
def catalog(db) -> Dict[str, Dict[str, Any]]:
    products = {
        "course": {"id": "course-1", "name": "Price Action Masterclass", "type": "course", "price": 49.99, "currency": "USD", "is_active": True},
        "signal": {"id": "signal-1", "name": "Forex Signals Weekly", "type": "signal", "price": 19.0, "currency": "USD", "is_active": True},
        "bot": {"id": "bot-1", "name": "Scalper Bot", "type": "bot", "price": 99.0, "currency": "USD", "is_active": True},
        "retired": {"id": "course-old", "name": "Retired Course", "type": "course", "price": 10.0, "currency": "USD", "is_active": False},
    }
    db.seed("products", *products.values())
    db.seed("signal_plans", {"product_id": "signal-1", "interval": "weekly"})
    db.seed("trading_bots", {
        "product_id": "bot-1",
        "download_url": "https://cdn.example.test/scalper-bot-1.2.0.zip",
        "version": "1.2.0",
        "setup_instructions": "Copier dans MQL5/Experts",
        "requirements": "MetaTrader 5",
    })
    return products

# --- Fournisseurs de paiement simulés ---

class FakeStripe:
    def __init__(self):
        self.intents: Dict[str, Dict[str, Any]] = {}
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.error: Optional[str] = None
        self._ids = itertools.count(1)

    def create_payment_intent(self, *, amount, currency, metadata):
        if self.error:
            raise PaymentProviderError("stripe", self.error)
        pid = f"pi_test_{next(self._ids)}"
        self.intents[pid] = {"id": pid, "client_secret": f"{pid}_secret", "amount": round(amount * 100), "currency": currency.lower(), "metadata": dict(metadata)}
        return dict(self.intents[pid])

    def create_checkout_session(self, *, product, amount, currency, success_url, cancel_url, metadata, client_reference_id):
        if self.error:
            raise PaymentProviderError("stripe", self.error)
        sid = f"cs_test_{next(self._ids)}"
        self.sessions[sid] = {
            "id": sid,
            "url": f"https://checkout.stripe.test/{sid}",
            "payment_status": "unpaid",
            "payment_intent": None,
            "amount_total": round(amount * 100),
            "currency": currency.lower(),
            "client_reference_id": client_reference_id,
            "metadata": dict(metadata),
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        return dict(self.sessions[sid])

    def get_session(self, session_id):
        if session_id not in self.sessions:
            raise PaymentProviderError("stripe", "No such checkout.session")
        return dict(self.sessions[session_id])

    def pay(self, session_id: str, payment_intent: Optional[str] = None) -> Dict[str, Any]:
        s = self.sessions[session_id]
        s["payment_status"] = "paid"
        s["payment_intent"] = payment_intent or f"pi_for_{session_id}"
        return dict(s)

    def paid_session_for_intent(self, intent_id: str) -> str:
        """Session payée rattachée à un PaymentIntent existant (même metadata)."""
        intent = self.intents[intent_id]
        sid = f"cs_test_{next(self._ids)}"
        self.sessions[sid] = {
            "id": sid,
            "payment_status": "paid",
            "payment_intent": intent_id,
            "amount_total": intent["amount"],
            "currency": intent["currency"],
            "client_reference_id": intent["metadata"]["order_id"],
            "metadata": dict(intent["metadata"]),
        }
        return sid

@pytest.fixture
def fake_stripe(monkeypatch) -> FakeStripe:
    fake = FakeStripe()
    monkeypatch.setattr("academy.payments.stripe_client.require_stripe", lambda: None)
    monkeypatch.setattr("academy.payments.stripe_client.create_payment_intent", fake.create_payment_intent)
    monkeypatch.setattr("academy.payments.stripe_client.create_checkout_session", fake.create_checkout_session)
    monkeypatch.setattr("academy.payments.stripe_client.get_session", fake.get_session)
    return fake

class FakeMoMo:
    def __init__(self):
        self.requests: List[Dict[str, Any]] = []
        self.statuses: Dict[str, Dict[str, Any]] = {}
        self.error: Optional[str] = None
        self.status_error = False

    def request_payment(self, *, amount, phone_number, order_id, description):
        if self.error:
            raise PaymentProviderError("mtn_momo", self.error)
        ref = f"ref-{len(self.requests) + 1}"
        self.requests.append({"ref": ref, "amount": amount, "phone_number": phone_number, "order_id": order_id})
        self.statuses[ref] = {"status": "PENDING"}
        return ref

    def get_payment_status(self, reference_id):
        if self.status_error:
            raise PaymentProviderError("mtn_momo", "Failed to verify payment status")
        return dict(self.statuses.get(reference_id) or {"status": "PENDING"})

    def settle(self, reference_id: str, status: str = "SUCCESSFUL", txn: str = "fin-123") -> None:
        self.statuses[reference_id] = {"status": status, "financialTransactionId": txn}

@pytest.fixture
def fake_momo(monkeypatch) -> FakeMoMo:
    fake = FakeMoMo()
    monkeypatch.setattr("academy.payments.momo_client.get_momo_client", lambda: fake)
    return fake

# --- Application ---

@pytest.fixture(scope="session")
def app():
    return fastapi_app

@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c

# Simuler un utilisateur authentifié pour les endpoints protégés
@pytest.fixture(autouse=True)
def _override_require_user(app):
    app.dependency_overrides[require_user] = lambda: dict(TEST_USER)
    try:
        yield
    finally:
        app.dependency_overrides.pop(require_user, None)
