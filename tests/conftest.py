import os

# Avant tout import de l'app: pas de Redis ni de sweeper en tests
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")
os.environ.setdefault("DISABLE_PASS_SWEEPER", "1")

import copy
import threading
from collections import Counter
from datetime import datetime
from typing import Any, Dict, Generator, List, Optional
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from backend.app import app as fastapi_app
from backend.passes.errors import GatewayError, InternalError
from backend.payments.phonepe_client import GatewaySettings, PhonePeClient
from backend.payments.status import GatewayState, GatewayStatus
from backend.utils.security import require_user
from backend.utils.timeutils import parse_ts

BUYER = {"id": "user-1", "email": "buyer@example.com", "role": "user", "phone": "9999999999", "active_passes": 0}
ORGANIZER = {"id": "org-1", "email": "org@example.com", "role": "event_manager", "active_passes": 0}
EVENT = {
    "id": "event-1",
    "title": "Concert",
    "date": "2026-12-31",
    "venue": "Stade",
    "ticket_price": 500,
    "remaining_seats": 10,
    "organizer_email": "org@example.com",
}

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "/tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "/tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)

class FakeStore:
    """
    Remplace les tables Supabase en mémoire.
    update_pass_if / mark_token_scanned évaluent leur prédicat sous verrou,
    comme le ferait un UPDATE ... WHERE côté PostgREST.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.passes: Dict[str, Dict[str, Any]] = {}
        self.tokens: Dict[str, Dict[str, Any]] = {}
        self.users: Dict[str, Dict[str, Any]] = {u["id"]: dict(u) for u in (BUYER, ORGANIZER)}
        self.events: Dict[str, Dict[str, Any]] = {EVENT["id"]: dict(EVENT)}
        self.increments: Counter = Counter()
        # Erreurs à lever au prochain appel: {"insert_entry_tokens": [InternalError(...)], ...}
        self.failures: Dict[str, List[Exception]] = {}

    # --- passes ---
    def insert_pass(self, row: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            if any(p["merchant_order_id"] == row.get("merchant_order_id") for p in self.passes.values()):
                raise InternalError("duplicate merchant_order_id", reason="store_insert_pass_failed")
            created = {
                "id": str(uuid4()),
                "pass_uuid": None,
                "confirmed_at": None,
                "payment_details": None,
                "gateway_order_id": None,
                "payment_url": None,
                "active_pass_counted": False,
                **copy.deepcopy(row),
            }
            self.passes[created["id"]] = created
            return copy.deepcopy(created)

    def _find(self, **filters) -> Optional[Dict[str, Any]]:
        with self._lock:
            for p in self.passes.values():
                if all(p.get(k) == v for k, v in filters.items()):
                    return copy.deepcopy(p)
        return None

    def get_pass_by_id(self, pass_id):
        return self._find(id=pass_id)

    def get_pass_by_order(self, merchant_order_id):
        return self._find(merchant_order_id=merchant_order_id)

    def get_pass_by_uuid(self, pass_uuid, status=None):
        if not pass_uuid:
            return None
        if status:
            return self._find(pass_uuid=pass_uuid, status=status)
        return self._find(pass_uuid=pass_uuid)

    def list_passes_for_user_event(self, user_id, event_id, payment_status):
        with self._lock:
            return [
                copy.deepcopy(p) for p in self.passes.values()
                if p["user_id"] == user_id and p["event_id"] == event_id and p["payment_status"] == payment_status
            ]

    def list_expired_pending(self, now: datetime):
        with self._lock:
            return [
                copy.deepcopy(p) for p in self.passes.values()
                if p["status"] == "pending" and parse_ts(p["expires_at"]) < now
            ]

    def update_pass_if(self, match, changes):
        if not match:
            raise ValueError("update_pass_if requires a non-empty match")
        with self._lock:
            for p in self.passes.values():
                if all(p.get(k) == v for k, v in match.items()):
                    p.update(copy.deepcopy(changes))
                    return copy.deepcopy(p)
        return None

    # --- jetons ---
    def _maybe_fail(self, name: str) -> None:
        pending = self.failures.get(name)
        if pending:
            raise pending.pop(0)

    def insert_entry_tokens(self, rows: List[Dict[str, Any]]):
        self._maybe_fail("insert_entry_tokens")
        with self._lock:
            taken = {(t["pass_id"], t["seat_index"]) for t in self.tokens.values()}
            if any((r["pass_id"], r["seat_index"]) in taken for r in rows):
                raise InternalError("duplicate (pass_id, seat_index)", reason="store_insert_entry_tokens_failed")
            for r in rows:
                self.tokens[r["id"]] = {"created_at": "2026-01-01T00:00:00+00:00", **copy.deepcopy(r)}
            return [copy.deepcopy(self.tokens[r["id"]]) for r in rows]

    def list_entry_tokens(self, pass_id):
        with self._lock:
            rows = [copy.deepcopy(t) for t in self.tokens.values() if t["pass_id"] == pass_id]
        return sorted(rows, key=lambda t: t["seat_index"])

    def get_entry_token(self, pass_id, token_id):
        with self._lock:
            t = self.tokens.get(token_id)
            return copy.deepcopy(t) if t and t["pass_id"] == pass_id else None

    def mark_token_scanned(self, pass_id, token_id, scanned_at):
        with self._lock:
            t = self.tokens.get(token_id)
            if not t or t["pass_id"] != pass_id or t["scanned_at"] is not None:
                return None
            t["scanned_at"] = scanned_at.isoformat()
            return copy.deepcopy(t)

    # --- users / events ---
    def get_user_by_id(self, user_id):
        u = self.users.get(user_id)
        return dict(u) if u else None

    def increment_active_passes(self, user_id):
        self._maybe_fail("increment_active_passes")
        with self._lock:
            self.increments[user_id] += 1
            if user_id in self.users:
                self.users[user_id]["active_passes"] = self.users[user_id].get("active_passes", 0) + 1

    def get_event(self, event_id):
        e = self.events.get(event_id)
        return dict(e) if e else None

    # --- aides de test ---
    def pass_by_order(self, merchant_order_id) -> Dict[str, Any]:
        return self.get_pass_by_order(merchant_order_id)

    def tokens_for(self, pass_id) -> List[Dict[str, Any]]:
        return self.list_entry_tokens(pass_id)

class FakeGateway(PhonePeClient):
    """Client PhonePe sans réseau: ordres et statuts pilotés par le test."""

    def __init__(self, settings: Optional[GatewaySettings] = None):
        super().__init__(settings or GatewaySettings(auth_url="https://auth.test/token", base_url="https://pg.test"))
        self.created: List[Dict[str, Any]] = []
        self.states: Dict[str, GatewayState] = {}
        self.fail_create = False
        self.fail_status = False

    def create_order(self, *, merchant_order_id, amount_minor_units, metadata, redirect_url):
        if self.fail_create:
            raise GatewayError("Order creation failed: boom", reason="gateway_order_failed", upstream="boom")
        self.created.append({
            "merchant_order_id": merchant_order_id,
            "amount_minor_units": amount_minor_units,
            "metadata": metadata,
            "redirect_url": redirect_url,
        })
        return {"gatewayOrderId": f"OMO-{merchant_order_id}", "paymentUrl": f"https://pay.test/{merchant_order_id}"}

    def get_order_status(self, merchant_order_id):
        if self.fail_status:
            raise GatewayError("Status check failed: timeout", reason="gateway_status_failed", upstream="timeout")
        state = self.states.get(merchant_order_id, GatewayState.PENDING)
        return GatewayStatus(
            state=state,
            merchant_order_id=merchant_order_id,
            order_id=f"OMO-{merchant_order_id}",
            amount=100000,
            transaction_id="T123" if state == GatewayState.COMPLETED else None,
            payment_mode="UPI_QR" if state == GatewayState.COMPLETED else None,
            reason="PAYMENT_DECLINED" if state == GatewayState.FAILED else None,
            raw={"state": state.value, "orderId": f"OMO-{merchant_order_id}"},
        )

@pytest.fixture()
def store(monkeypatch) -> FakeStore:
    fake = FakeStore()
    for name in (
        "insert_pass", "get_pass_by_id", "get_pass_by_order", "get_pass_by_uuid",
        "list_passes_for_user_event", "list_expired_pending", "update_pass_if",
        "insert_entry_tokens", "list_entry_tokens", "get_entry_token", "mark_token_scanned",
    ):
        monkeypatch.setattr(f"backend.passes.repository.{name}", getattr(fake, name))
    monkeypatch.setattr("backend.users.repository.get_user_by_id", fake.get_user_by_id)
    monkeypatch.setattr("backend.users.repository.increment_active_passes", fake.increment_active_passes)
    monkeypatch.setattr("backend.evenements.repository.get_event", fake.get_event)
    return fake

@pytest.fixture()
def gateway(monkeypatch) -> FakeGateway:
    fake = FakeGateway()
    monkeypatch.setattr("backend.payments.phonepe_client.get_gateway", lambda: fake)
    return fake

@pytest.fixture()
def signed_gateway(monkeypatch) -> FakeGateway:
    """Passerelle avec identifiants webhook configurés: signature obligatoire."""
    fake = FakeGateway(GatewaySettings(
        auth_url="https://auth.test/token",
        base_url="https://pg.test",
        webhook_username="hook",
        webhook_password="pw",
    ))
    monkeypatch.setattr("backend.payments.phonepe_client.get_gateway", lambda: fake)
    return fake

# Aucun test ne doit atteindre Supabase
@pytest.fixture(autouse=True)
def _no_supabase(monkeypatch):
    monkeypatch.setattr("backend.infra.supabase_client.get_supabase", lambda: MagicMock())
    monkeypatch.setattr("backend.infra.supabase_client.get_service_supabase", lambda: MagicMock())

@pytest.fixture(scope="session")
def app():
    return fastapi_app

@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c

@pytest.fixture()
def login(app):
    """Change l'utilisateur authentifié courant: login({"id": ..., "role": ...})."""
    def _login(user: Dict[str, Any]) -> Dict[str, Any]:
        app.dependency_overrides[require_user] = lambda: user
        return user
    return _login

# Simuler l'acheteur authentifié pour les endpoints protégés
@pytest.fixture(autouse=True)
def _override_require_user(app):
    fake_user = {"id": BUYER["id"], "email": BUYER["email"], "role": "user", "token": "fake-token"}
    app.dependency_overrides[require_user] = lambda: fake_user
    try:
        yield
    finally:
        app.dependency_overrides.pop(require_user, None)
