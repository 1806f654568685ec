"""
Expiration des pass 'pending' non payés.
- expire_stale_passes(): une passe synchrone (lecture puis transition gardée par pass)
- run_sweeper(): boucle asyncio lancée par le lifespan, appels Supabase dans un thread
"""
from datetime import datetime
from typing import Optional
import asyncio
import logging

from backend.passes import repository
from backend.passes.state import PassEvent
from backend.payments import service as reconciliation
from backend.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

def expire_stale_passes(now: Optional[datetime] = None) -> int:
    """
    Passe en 'expired' les pass 'pending' dont expires_at < now.
    Chaque écriture revérifie status=pending: un pass confirmé entre la lecture
    et l'écriture n'est jamais expiré. Retourne le nombre de pass expirés.
    """
    now = now or utcnow()
    candidates = repository.list_expired_pending(now)
    expired = 0
    for row in candidates:
        if reconciliation.apply_transition(row, PassEvent.EXPIRED) is not None:
            expired += 1
    if candidates:
        logger.info("sweeper.expire candidates=%s expired=%s", len(candidates), expired)
    return expired

async def run_sweeper(interval_seconds: int) -> None:
    """Boucle périodique; une erreur d'un cycle est journalisée et n'arrête pas la boucle."""
    logger.info("sweeper started interval=%ss", interval_seconds)
    while True:
        try:
            await asyncio.to_thread(expire_stale_passes)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("sweeper cycle failed")
        await asyncio.sleep(interval_seconds)
