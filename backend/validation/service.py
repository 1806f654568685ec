from typing import Any, Dict, Optional
import logging

from backend.evenements import repository as events_repository
from backend.passes import repository
from backend.passes import tokens
from backend.passes.errors import AlreadyRedeemedError, AuthorizationError, NotFoundError, ValidationError
from backend.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

SCANNER_ROLES = ("admin", "event_manager")

def redeem(pass_uuid: str, token_id: str) -> Dict[str, Any]:
    """
    Valide (scanne) un jeton d'entrée.
    Un jeton ne peut être scanné qu'une fois: l'écriture porte le prédicat scanned_at IS NULL,
    deux scans simultanés donnent un succès et un AlreadyRedeemedError.
    """
    if not pass_uuid or not token_id:
        raise ValidationError("passUUID et tokenId requis", reason="ids_required")

    pass_row = repository.get_pass_by_uuid(pass_uuid)
    if not pass_row:
        raise NotFoundError("Valid pass not found", reason="pass_not_found")
    token = repository.get_entry_token(pass_row["id"], token_id)
    if not token:
        raise NotFoundError("QR code not found", reason="token_not_found")
    if token.get("scanned_at"):
        raise AlreadyRedeemedError("QR code already scanned", reason="already_scanned")

    updated = repository.mark_token_scanned(pass_row["id"], token_id, utcnow())
    if updated is None:
        logger.info("validation.redeem lost race pass_id=%s token_id=%s", pass_row.get("id"), token_id)
        raise AlreadyRedeemedError("QR code already scanned", reason="already_scanned")

    logger.info("validation.redeem ok pass_id=%s token_id=%s", pass_row.get("id"), token_id)
    return {
        "success": True,
        "message": "QR code validated successfully",
        "token": tokens.serialize_token(updated),
    }

def authorize_scanner(user: Dict[str, Any], event_id: Optional[str]) -> Dict[str, Any]:
    """
    Vérifie qu'un utilisateur peut scanner les billets d'un événement:
    - rôle admin ou event_manager
    - email identique à l'organisateur de l'événement
    """
    if not event_id:
        raise ValidationError("eventId requis", reason="event_id_required")
    if (user or {}).get("role") not in SCANNER_ROLES:
        raise AuthorizationError("You don't have permission to scan tickets", reason="invalid_role")

    event = events_repository.get_event(event_id)
    if not event:
        raise NotFoundError("Event not found", reason="event_not_found")

    email = (user.get("email") or "").strip().lower()
    organizer = (event.get("organizer_email") or "").strip().lower()
    if not email or email != organizer:
        raise AuthorizationError("You are not the organizer of this event", reason="not_event_organizer")

    return {"success": True, "message": "User can scan tickets for this event", "eventId": event_id}
