"""
Lifespan FastAPI: initialisation/arrêt des ressources partagées.
- Initialise FastAPILimiter (Redis) avec options de test (fakeredis).
- Démarre le sweeper d'expiration des pass (tâche asyncio), annulé à l'arrêt.
- Variables d’environnement supportées:
  - DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS=1: désactive complètement le rate limiting (tests)
  - USE_FAKE_REDIS_FOR_TESTS=1: utilise fakeredis (tests)
  - DISABLE_PASS_SWEEPER=1: ne démarre pas le sweeper (tests)
"""
import asyncio
import contextlib
import os
import logging
from contextlib import asynccontextmanager
from typing import Optional

import redis.asyncio as redis
from fastapi import FastAPI
from fastapi_limiter import FastAPILimiter

from backend.config import PASS_SWEEPER_INTERVAL_SECONDS
from backend.passes.sweeper import run_sweeper

async def _init_rate_limiter(app: FastAPI, logger: logging.Logger) -> None:
    if os.getenv("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS") == "1":
        app.state.rate_limit_enabled = False
        logger.info("Rate limiting disabled by DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS")
        return
    try:
        if os.getenv("USE_FAKE_REDIS_FOR_TESTS") == "1":
            from fakeredis import FakeAsyncRedis
            r = FakeAsyncRedis(decode_responses=True)
        else:
            redis_url = os.getenv("RATE_LIMIT_REDIS_URL", "redis://127.0.0.1:6379/0")
            r = redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        await FastAPILimiter.init(r)
        app.state.rate_limit_enabled = True
        logger.info("Rate limiting enabled")
    except Exception as e:
        app.state.rate_limit_enabled = False
        logger.warning("Rate limiting disabled due to init error: %s", e)

def _start_sweeper(logger: logging.Logger) -> Optional[asyncio.Task]:
    if os.getenv("DISABLE_PASS_SWEEPER") == "1" or PASS_SWEEPER_INTERVAL_SECONDS <= 0:
        logger.info("Pass sweeper disabled")
        return None
    return asyncio.create_task(run_sweeper(PASS_SWEEPER_INTERVAL_SECONDS))

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    - En cas d’échec de Redis, le rate limiting est désactivé proprement.
    - Le sweeper tourne tant que l'application vit; il est annulé à l'arrêt.
    """
    logger = logging.getLogger("uvicorn.error")
    await _init_rate_limiter(app, logger)
    sweeper = _start_sweeper(logger)
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
            logger.info("Pass sweeper stopped")
