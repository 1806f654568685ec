"""
Endpoints API des pass: réservation et consultations.
- Réservation: authentifiée + rate limit (10 req / 60s).
- Les erreurs métier (PassError) sont rendues en JSON par le handler applicatif.
"""
from typing import Any, Dict
from fastapi import APIRouter, Depends

from backend.passes import service
from backend.passes.models import BookPassRequest, EventRequest
from backend.payments import service as reconciliation
from backend.utils.rate_limit import optional_rate_limit
from backend.utils.security import require_user

router = APIRouter(prefix="/api/v1/passes", tags=["Passes API"])

@router.post("/book", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def book_pass(payload: BookPassRequest, user: Dict[str, Any] = Depends(require_user)):
    """
    Réserve un pass (acheteur + amis) et renvoie l'URL de paiement PhonePe.
    - Entrée JSON: {"eventId": "...", "passType": "General", "friends": [...]}
    - Retour: {"success": true, passId, merchantOrderId, paymentUrl, amount, ...}
    - Erreurs: 400 capacité insuffisante, 404 utilisateur/événement, 500 PhonePe
    """
    data = service.request_order(
        user_id=user.get("id"),
        event_id=payload.event_id,
        pass_type=payload.pass_type,
        friends=payload.friends,
    )
    return {"success": True, "message": "Pass booking initiated", **data}

@router.get("/order/{merchant_order_id}")
def pass_by_order(merchant_order_id: str, user: Dict[str, Any] = Depends(require_user)):
    return {"success": True, "data": reconciliation.lookup_by_order(merchant_order_id)}

@router.get("/uuid/{pass_uuid}")
def pass_by_uuid(pass_uuid: str):
    return {"success": True, "pass": service.get_pass_summary(pass_uuid)}

@router.get("/uuid/{pass_uuid}/tokens/{token_id}")
def entry_token_detail(pass_uuid: str, token_id: str):
    return {"success": True, "data": service.get_entry_token_detail(pass_uuid, token_id)}

@router.post("/mine")
def my_passes(payload: EventRequest, user: Dict[str, Any] = Depends(require_user)):
    """Pass payés de l'utilisateur courant pour un événement (jetons d'entrée inclus)."""
    return {"success": True, "passes": service.list_user_event_passes(user, payload.event_id)}

@router.get("/qr/{pass_uuid}")
def pass_for_qr(pass_uuid: str):
    return {"success": True, "data": service.get_pass_for_qr(pass_uuid)}

@router.get("/{pass_id}/status")
def ticket_status(pass_id: str, user: Dict[str, Any] = Depends(require_user)):
    return {"success": True, "data": service.get_ticket_status(pass_id)}
