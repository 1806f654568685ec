from typing import Optional
import logging
import backend.infra.supabase_client as supabase_client
from backend.passes.errors import InternalError

logger = logging.getLogger(__name__)

# Colonnes attendues: id, title, date, venue, ticket_price, remaining_seats, organizer_email
def get_event(event_id: str) -> Optional[dict]:
    """Événement par id, ou None s'il n'existe pas. Une erreur Supabase remonte en InternalError."""
    if not event_id:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("events")
            .select("*")
            .eq("id", event_id)
            .limit(1)
            .execute()
        )
    except Exception:
        logger.exception("evenements.repository.get_event failed id=%s", event_id)
        raise InternalError("Erreur d'accès aux données", reason="store_get_event_failed")
    rows = res.data or []
    return rows[0] if rows else None
