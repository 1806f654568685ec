"""Couche service des pass (réservation et lectures).
Rôles:
- Créer un pass « pending » puis l'ordre PhonePe correspondant (request_order).
- Exposer les vues de lecture: résumé par UUID, pass d'un utilisateur pour un événement,
  pass pour QR, statut d'un billet, détail d'un jeton d'entrée.
Remarque: le pass pending est persisté AVANT l'appel PhonePe et n'est pas annulé si
PhonePe échoue; il reste pending jusqu'à son expiration par le sweeper.
"""
from datetime import timedelta
from typing import Any, Dict, List, Optional
from uuid import uuid4
import logging
import time

from backend.config import BASE_URL, PASS_TTL_MINUTES
from backend.evenements import repository as events_repository
from backend.passes import repository
from backend.passes import tokens
from backend.passes.errors import CapacityError, NotFoundError, ValidationError
from backend.passes.state import PassStatus, PaymentStatus
from backend.payments import phonepe_client
from backend.payments import service as reconciliation
from backend.users import repository as users_repository
from backend.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_PASS_TYPE = "General"

def new_merchant_order_id() -> str:
    """Identifiant d'ordre marchand: TKT_<epoch ms>_<12 hex>; l'unicité est garantie par la contrainte UNIQUE en base."""
    return f"TKT_{int(time.time() * 1000)}_{uuid4().hex[:12]}"

def to_minor_units(amount: float) -> int:
    return int(round(float(amount) * 100))

def callback_url(merchant_order_id: str) -> str:
    return f"{BASE_URL}/api/v1/payments/callback/{merchant_order_id}"

def _unit_price(event: Dict[str, Any]) -> float:
    try:
        return float(event.get("ticket_price") or 0)
    except (TypeError, ValueError):
        return 0.0

def request_order(
    *,
    user_id: Optional[str],
    event_id: Optional[str],
    pass_type: Optional[str] = None,
    friends: Optional[List[Any]] = None,
) -> Dict[str, Any]:
    """
    Réserve un pass pour l'utilisateur et ses amis, puis crée l'ordre PhonePe.
    - ValidationError: user_id/event_id manquants ou friends non-liste
    - NotFoundError: utilisateur ou événement introuvable
    - CapacityError: remaining_seats < 1 + len(friends)
    - GatewayError: création d'ordre PhonePe en échec (pass pending conservé)
    """
    if not user_id or not event_id:
        raise ValidationError("User ID and Event ID are required", reason="ids_required")
    if friends is not None and not isinstance(friends, list):
        raise ValidationError("friends doit être une liste", reason="invalid_friends")
    friends = friends or []
    pass_type = pass_type or DEFAULT_PASS_TYPE

    user = users_repository.get_user_by_id(user_id)
    if not user:
        raise NotFoundError("User not found", reason="user_not_found")
    event = events_repository.get_event(event_id)
    if not event:
        raise NotFoundError("Event not found", reason="event_not_found")

    total_tickets = 1 + len(friends)
    remaining = int(event.get("remaining_seats") or 0)
    if remaining < total_tickets:
        raise CapacityError("Insufficient tickets available", reason="insufficient_capacity")

    unit_price = _unit_price(event)
    total_amount = unit_price * total_tickets
    amount_minor = to_minor_units(total_amount)

    created_at = utcnow()
    expires_at = created_at + timedelta(minutes=PASS_TTL_MINUTES)
    merchant_order_id = new_merchant_order_id()

    pass_row = repository.insert_pass({
        "user_id": user_id,
        "event_id": event_id,
        "pass_type": pass_type,
        "status": PassStatus.PENDING.value,
        "payment_status": PaymentStatus.PENDING.value,
        "merchant_order_id": merchant_order_id,
        "amount": unit_price,
        "friends": friends,
        "created_at": created_at.isoformat(),
        "expires_at": expires_at.isoformat(),
    })
    logger.info("passes.request_order pass_id=%s merchant_order_id=%s total=%s", pass_row.get("id"), merchant_order_id, total_amount)

    order = phonepe_client.get_gateway().create_order(
        merchant_order_id=merchant_order_id,
        amount_minor_units=amount_minor,
        metadata={"user_id": user_id, "event_id": event_id, "pass_type": pass_type, "friends": friends},
        redirect_url=callback_url(merchant_order_id),
    )

    updated = repository.update_pass_if(
        {"id": pass_row["id"], "status": PassStatus.PENDING.value},
        {"gateway_order_id": order.get("gatewayOrderId"), "payment_url": order.get("paymentUrl")},
    )
    if updated is None:
        # Un webhook a pu confirmer l'ordre entre-temps: on garde l'URL dans la réponse seulement
        logger.warning("passes.request_order pass %s no longer pending when storing payment url", pass_row.get("id"))

    return {
        "passId": pass_row.get("id"),
        "merchantOrderId": merchant_order_id,
        "gatewayOrderId": order.get("gatewayOrderId"),
        "paymentUrl": order.get("paymentUrl"),
        "amount": total_amount,
        "amountInMinorUnits": amount_minor,
        "totalTickets": total_tickets,
        "expiresAt": expires_at.isoformat(),
        "event": {
            "id": event.get("id"),
            "title": event.get("title"),
            "date": event.get("date"),
            "venue": event.get("venue"),
        },
        "friends": friends,
    }

# --- Lectures ---

def get_pass_summary(pass_uuid: str) -> Dict[str, Any]:
    """Résumé aplati d'un pass confirmé (écran de contrôle)."""
    if not pass_uuid:
        raise ValidationError("Pass UUID is required", reason="pass_uuid_required")
    pass_row = repository.get_pass_by_uuid(pass_uuid)
    if not pass_row:
        raise NotFoundError("Pass not found", reason="pass_not_found")
    event = events_repository.get_event(pass_row.get("event_id")) or {}
    entries = tokens.entry_count(pass_row)
    return {
        "passAmount": float(pass_row.get("amount") or 0) * entries,
        "passEventName": event.get("title") or "Unknown Event",
        "passEventDate": event.get("date") or "Unknown Date",
        "passPaymentStatus": pass_row.get("payment_status") or "ERROR",
        "passStatus": pass_row.get("status") or "ERROR",
        "passCreatedAt": pass_row.get("created_at"),
        "passEntries": entries,
        "eventId": pass_row.get("event_id"),
    }

def list_user_event_passes(user: Dict[str, Any], event_id: Optional[str]) -> List[Dict[str, Any]]:
    """Pass payés de l'utilisateur pour un événement, avec leurs jetons d'entrée."""
    if not event_id:
        raise ValidationError("eventId requis", reason="event_id_required")
    passes = repository.list_passes_for_user_event(user.get("id"), event_id, PaymentStatus.COMPLETED.value)
    if not passes:
        raise NotFoundError("No passes found", reason="passes_not_found")
    return [
        {
            "passUUID": p.get("pass_uuid"),
            "passId": p.get("id"),
            "passType": p.get("pass_type"),
            "qrIdentifier": tokens.qr_identifier(p["pass_uuid"]) if p.get("pass_uuid") else None,
            "entryTokens": [tokens.serialize_token(t) for t in repository.list_entry_tokens(p["id"])],
            "email": user.get("email"),
            "eventId": event_id,
        }
        for p in passes
    ]

def get_pass_for_qr(pass_uuid: str) -> Dict[str, Any]:
    """Détail d'un pass ACTIF (utilisé pour générer/afficher le QR côté front)."""
    pass_row = repository.get_pass_by_uuid(pass_uuid, status=PassStatus.ACTIVE.value)
    if not pass_row:
        raise NotFoundError("Valid pass not found", reason="pass_not_found")
    user = users_repository.get_user_by_id(pass_row.get("user_id")) or {}
    event = events_repository.get_event(pass_row.get("event_id")) or {}
    return {
        "passUUID": pass_row.get("pass_uuid"),
        "passType": pass_row.get("pass_type"),
        "confirmedAt": pass_row.get("confirmed_at"),
        "user": {"id": user.get("id"), "email": user.get("email"), "phone": user.get("phone")},
        "event": {"id": event.get("id"), "title": event.get("title"), "date": event.get("date"), "venue": event.get("venue")},
        "friends": pass_row.get("friends") or [],
        "amount": pass_row.get("amount"),
        "qrIdentifier": tokens.qr_identifier(pass_row["pass_uuid"]),
    }

def get_ticket_status(pass_id: str) -> Dict[str, Any]:
    """
    Statut d'un billet par id interne.
    - Si le pass est encore pending, réinterroge PhonePe (auto_apply) via le moteur de réconciliation;
      une erreur PhonePe est journalisée et le statut local est renvoyé tel quel.
    """
    pass_row = repository.get_pass_by_id(pass_id)
    if not pass_row:
        raise NotFoundError("Pass not found", reason="pass_not_found")

    if pass_row.get("status") == PassStatus.PENDING.value and pass_row.get("merchant_order_id"):
        try:
            reconciliation.query_remote_status(pass_row["merchant_order_id"], auto_apply=True)
            pass_row = repository.get_pass_by_id(pass_id) or pass_row
        except Exception:
            logger.exception("passes.get_ticket_status refresh failed pass_id=%s", pass_id)

    active = pass_row.get("status") == PassStatus.ACTIVE.value and pass_row.get("pass_uuid")
    return {
        "pass": pass_row,
        "qrCode": tokens.qr_identifier(pass_row["pass_uuid"]) if active else None,
    }

def get_entry_token_detail(pass_uuid: str, token_id: str) -> Dict[str, Any]:
    """Détail d'un jeton d'entrée: acheteur, événement, personne titulaire, montant unitaire."""
    pass_row = repository.get_pass_by_uuid(pass_uuid)
    if not pass_row:
        raise NotFoundError("Valid pass not found", reason="pass_not_found")
    token = repository.get_entry_token(pass_row["id"], token_id)
    if not token:
        raise NotFoundError("QR code not found", reason="token_not_found")
    return {
        "buyer": pass_row.get("user_id"),
        "event": pass_row.get("event_id"),
        "person": tokens.serialize_token(token),
        "amount": pass_row.get("amount"),
        "identifier": tokens.entry_token_identifier(pass_uuid, token_id),
    }
