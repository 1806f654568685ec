from types import SimpleNamespace

import pytest
from fastapi import FastAPI, Depends, Request
from fastapi.testclient import TestClient
from fastapi_limiter import FastAPILimiter

from backend.utils.rate_limit import optional_rate_limit, rate_limit_health_info

def _make_app(times=2, seconds=60):
    app = FastAPI()

    @app.get("/limitedA", dependencies=[Depends(optional_rate_limit(times, seconds))])
    def limited_a():
        return {"ok": True}

    @app.get("/limitedB", dependencies=[Depends(optional_rate_limit(times, seconds))])
    def limited_b():
        return {"ok": True}

    @app.get("/rl_info")
    def rl_info(request: Request):
        return rate_limit_health_info(request)

    return app

def test_rate_limit_fallback_blocks_after_limit(monkeypatch):
    monkeypatch.setenv("LOCAL_RATE_LIMIT_FALLBACK", "1")
    client = TestClient(_make_app(times=2, seconds=60))

    assert client.get("/limitedA").status_code == 200
    assert client.get("/limitedA").status_code == 200
    assert client.get("/limitedA").status_code == 429

def test_rate_limit_is_per_path_and_token(monkeypatch):
    monkeypatch.setenv("LOCAL_RATE_LIMIT_FALLBACK", "1")
    client = TestClient(_make_app(times=1, seconds=60))
    alice = {"Authorization": "Bearer alice"}
    bob = {"Authorization": "Bearer bob"}

    assert client.get("/limitedA", headers=alice).status_code == 200
    assert client.get("/limitedA", headers=alice).status_code == 429
    # Autre chemin, autre jeton: compteurs indépendants
    assert client.get("/limitedB", headers=alice).status_code == 200
    assert client.get("/limitedA", headers=bob).status_code == 200

def test_rate_limit_fallback_drops_expired_keys(monkeypatch):
    monkeypatch.setenv("LOCAL_RATE_LIMIT_FALLBACK", "1")
    clock = {"now": 1000.0}
    monkeypatch.setattr("backend.utils.rate_limit.time", SimpleNamespace(time=lambda: clock["now"]))
    app = _make_app(times=1, seconds=60)
    client = TestClient(app)

    assert client.get("/limitedA", headers={"Authorization": "Bearer alice"}).status_code == 200
    assert client.get("/limitedA", headers={"Authorization": "Bearer bob"}).status_code == 200
    assert len(app.state._rl_store[60]) == 2

    clock["now"] += 61
    assert client.get("/limitedB", headers={"Authorization": "Bearer alice"}).status_code == 200
    keys = list(app.state._rl_store[60])
    assert len(keys) == 1 and keys[0].endswith(":/limitedB")

def test_rate_limit_disabled_flag_bypasses_limit(monkeypatch):
    monkeypatch.delenv("LOCAL_RATE_LIMIT_FALLBACK", raising=False)
    app = _make_app(times=1, seconds=60)
    app.state.rate_limit_enabled = False
    client = TestClient(app)

    for _ in range(3):
        assert client.get("/limitedA").status_code == 200

def test_rate_limit_health_info(monkeypatch):
    monkeypatch.setattr(FastAPILimiter, "redis", None, raising=False)
    app = _make_app()
    app.state.rate_limit_enabled = True
    info = TestClient(app).get("/rl_info").json()
    assert info == {"enabled": True, "ready": False, "backend": None}

    monkeypatch.setattr(FastAPILimiter, "redis", object(), raising=False)
    info2 = TestClient(app).get("/rl_info").json()
    assert info2["ready"] is True
    assert info2["backend"] == "redis"
