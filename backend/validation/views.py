from typing import Any, Dict
from fastapi import APIRouter, Depends

from backend.passes import repository as passes_repository
from backend.passes.errors import NotFoundError
from backend.passes.models import EventRequest
from backend.utils.security import require_user
from backend.validation.service import authorize_scanner, redeem

router = APIRouter(prefix="/api/v1/validation", tags=["Validation API"])

@router.post("/redeem/{pass_uuid}/{token_id}")
def redeem_entry(pass_uuid: str, token_id: str, user: Dict[str, Any] = Depends(require_user)):
    """
    Scanner un jeton d'entrée.
    - Réservé à l'organisateur de l'événement du pass (rôle admin/event_manager)
    - Erreurs: 404 pass/jeton introuvable, 400 déjà scanné, 403 non autorisé
    """
    pass_row = passes_repository.get_pass_by_uuid(pass_uuid)
    if not pass_row:
        raise NotFoundError("Valid pass not found", reason="pass_not_found")
    authorize_scanner(user, pass_row.get("event_id"))
    return redeem(pass_uuid, token_id)

@router.post("/can-scan")
def can_scan(payload: EventRequest, user: Dict[str, Any] = Depends(require_user)):
    return authorize_scanner(user, payload.event_id)
