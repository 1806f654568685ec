import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from backend.passes.errors import AlreadyRedeemedError, AuthorizationError, NotFoundError
from backend.payments import service as reconciliation
from backend.payments.status import GatewayState, GatewayStatus
from backend.validation import service as svc

@pytest.fixture()
def active_pass(store):
    row = store.insert_pass({
        "user_id": "user-1",
        "event_id": "event-1",
        "status": "pending",
        "payment_status": "pending",
        "merchant_order_id": "TKT_1",
        "amount": 500,
        "friends": [{"name": "f1"}],
        "expires_at": "2026-01-01T00:20:00+00:00",
    })
    reconciliation.reconcile("TKT_1", GatewayStatus(state=GatewayState.COMPLETED), "webhook")
    row = store.pass_by_order("TKT_1")
    return row, store.tokens_for(row["id"])

def test_redeem_marks_token_once(store, active_pass):
    row, tokens = active_pass
    out = svc.redeem(row["pass_uuid"], tokens[0]["id"])
    assert out["success"] is True
    assert out["token"]["isScanned"] is True

    with pytest.raises(AlreadyRedeemedError):
        svc.redeem(row["pass_uuid"], tokens[0]["id"])

    # L'autre place reste utilisable
    assert svc.redeem(row["pass_uuid"], tokens[1]["id"])["success"] is True

def test_redeem_not_found(store, active_pass):
    row, _ = active_pass
    with pytest.raises(NotFoundError) as exc:
        svc.redeem("unknown-uuid", "t")
    assert exc.value.reason == "pass_not_found"
    with pytest.raises(NotFoundError) as exc:
        svc.redeem(row["pass_uuid"], "unknown-token")
    assert exc.value.reason == "token_not_found"

def test_token_of_another_pass_is_not_found(store, active_pass):
    row, tokens = active_pass
    other = store.insert_pass({"user_id": "user-1", "event_id": "event-1", "status": "active",
                               "payment_status": "completed", "merchant_order_id": "TKT_2",
                               "pass_uuid": "other-uuid", "friends": []})
    assert other["id"] != row["id"]
    with pytest.raises(NotFoundError):
        svc.redeem("other-uuid", tokens[0]["id"])

def test_concurrent_redeem_single_success(store, active_pass, monkeypatch):
    row, tokens = active_pass
    token_id = tokens[0]["id"]

    # Les deux scans lisent le jeton non scanné avant d'écrire
    barrier = threading.Barrier(2, timeout=5)
    original = store.get_entry_token

    def racing_get(pass_id, tid):
        t = original(pass_id, tid)
        barrier.wait()
        return t

    monkeypatch.setattr("backend.passes.repository.get_entry_token", racing_get)

    def scan(_):
        try:
            svc.redeem(row["pass_uuid"], token_id)
            return "ok"
        except AlreadyRedeemedError:
            return "already"

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = sorted(pool.map(scan, range(2)))
    assert results == ["already", "ok"]

def test_authorize_scanner(store):
    organizer = {"id": "org-1", "email": "ORG@example.com", "role": "event_manager"}
    assert svc.authorize_scanner(organizer, "event-1")["success"] is True

    admin_other = {"id": "a", "email": "admin@example.com", "role": "admin"}
    with pytest.raises(AuthorizationError) as exc:
        svc.authorize_scanner(admin_other, "event-1")
    assert exc.value.reason == "not_event_organizer"

    buyer_with_organizer_email = {"id": "u", "email": "org@example.com", "role": "user"}
    with pytest.raises(AuthorizationError) as exc:
        svc.authorize_scanner(buyer_with_organizer_email, "event-1")
    assert exc.value.reason == "invalid_role"

    with pytest.raises(NotFoundError):
        svc.authorize_scanner(organizer, "ghost-event")
