"""
Normalisation des réponses PhonePe (statut d'ordre et payload webhook).

PhonePe renvoie selon l'endpoint soit {"state": ...} soit {"data": {"state": ...}};
normalize_status() est le seul endroit qui connaît ces formes. Le moteur de
réconciliation ne manipule que GatewayStatus.
"""
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

WEBHOOK_ORDER_COMPLETED = "checkout.order.completed"
WEBHOOK_ORDER_FAILED = "checkout.order.failed"

class GatewayState(str, Enum):
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    PENDING = "PENDING"

class GatewayStatus(BaseModel):
    state: GatewayState
    merchant_order_id: Optional[str] = None
    order_id: Optional[str] = None
    amount: Optional[int] = None
    transaction_id: Optional[str] = None
    payment_mode: Optional[str] = None
    reason: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)

def _unwrap(raw: Dict[str, Any]) -> Dict[str, Any]:
    data = raw.get("data")
    if isinstance(data, dict) and ("state" in data or "orderId" in data):
        return data
    return raw

def _parse_state(value: Any) -> GatewayState:
    try:
        return GatewayState(str(value or "").upper())
    except ValueError:
        # États intermédiaires/inconnus: on ne tranche pas
        return GatewayState.PENDING

def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None

def normalize_status(raw: Optional[Dict[str, Any]], state: Optional[GatewayState] = None) -> GatewayStatus:
    """
    Construit un GatewayStatus depuis une réponse brute PhonePe.
    - raw: réponse de /checkout/v2/order/{id}/status ou payload d'un webhook
    - state: force l'état (webhook: déduit du nom de l'événement)
    - paymentDetails[0] fournit transactionId / paymentMode / errorCode
    """
    raw = raw if isinstance(raw, dict) else {}
    body = _unwrap(raw)
    details = body.get("paymentDetails") or []
    first = details[0] if isinstance(details, list) and details and isinstance(details[0], dict) else {}

    reason = (
        body.get("reason")
        or body.get("detailedErrorCode")
        or body.get("errorCode")
        or first.get("detailedErrorCode")
        or first.get("errorCode")
    )
    return GatewayStatus(
        state=state or _parse_state(body.get("state")),
        merchant_order_id=body.get("merchantOrderId"),
        order_id=body.get("orderId"),
        amount=_to_int(body.get("amount")),
        transaction_id=first.get("transactionId"),
        payment_mode=first.get("paymentMode"),
        reason=reason,
        raw=raw,
    )

def state_from_webhook_event(event: str) -> Optional[GatewayState]:
    """Événement webhook -> état; None pour les événements non gérés (ignorés)."""
    if event == WEBHOOK_ORDER_COMPLETED:
        return GatewayState.COMPLETED
    if event == WEBHOOK_ORDER_FAILED:
        return GatewayState.FAILED
    return None
