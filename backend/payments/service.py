"""
Moteur de réconciliation paiement <-> pass.

Trois déclencheurs indépendants et non ordonnés convergent ici:
- callback: retour navigateur, on réinterroge PhonePe puis on applique
- webhook: PhonePe pousse l'événement, on applique directement le payload
- status_check: vérification manuelle / retry, on réinterroge puis on applique

Chaque écriture passe par repository.update_pass_if() avec le prédicat de la
transition (backend.passes.state); seuls les appels dont l'UPDATE a modifié
une ligne déclenchent les effets (jetons d'entrée, compteur utilisateur).
"""
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4
import logging

from backend.passes import repository
from backend.passes import state
from backend.passes import tokens
from backend.passes.errors import InternalError, NotFoundError, ValidationError
from backend.passes.state import Effect, PassEvent, Transition
from backend.payments import phonepe_client
from backend.payments.status import GatewayState, GatewayStatus
from backend.users import repository as users_repository
from backend.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

class Source(str, Enum):
    CALLBACK = "callback"
    WEBHOOK = "webhook"
    STATUS_CHECK = "status_check"

def _source(value: Any) -> Source:
    try:
        return Source(value)
    except ValueError:
        raise ValidationError(f"Source de réconciliation inconnue: {value}", reason="invalid_source")

def _outcome(pass_row: Optional[Dict[str, Any]], source: Source, *, success: bool, message: str,
             applied: bool, already_processed: bool = False) -> Dict[str, Any]:
    pass_row = pass_row or {}
    return {
        "passId": pass_row.get("id"),
        "passUUID": pass_row.get("pass_uuid"),
        "status": pass_row.get("status"),
        "paymentStatus": pass_row.get("payment_status"),
        "success": success,
        "message": message,
        "applied": applied,
        "alreadyProcessed": already_processed,
        "source": source.value,
    }

def lookup_by_order(merchant_order_id: str) -> Dict[str, Any]:
    if not merchant_order_id:
        raise ValidationError("merchantOrderId requis", reason="merchant_order_id_required")
    pass_row = repository.get_pass_by_order(merchant_order_id)
    if not pass_row:
        raise NotFoundError("Pass introuvable pour cet ordre de paiement", reason="pass_not_found")
    return pass_row

# --- Application d'une transition ---

def _transition_changes(transition: Transition, pass_row: Dict[str, Any], status: Optional[GatewayStatus],
                        source: Optional[Source]) -> Dict[str, Any]:
    now = utcnow().isoformat()
    changes: Dict[str, Any] = transition.changes()
    if Effect.ASSIGN_UUID in transition.effects:
        changes["pass_uuid"] = pass_row.get("pass_uuid") or str(uuid4())
    if Effect.STAMP_CONFIRMATION in transition.effects:
        changes["confirmed_at"] = now
        changes["payment_details"] = {
            "orderId": status.order_id if status else None,
            "transactionId": status.transaction_id if status else None,
            "amount": status.amount if status else None,
            "paymentMode": status.payment_mode if status else None,
            "completedAt": now,
            "source": source.value if source else None,
            "merchantOrderId": pass_row.get("merchant_order_id"),
        }
    if Effect.STAMP_FAILURE in transition.effects:
        changes["payment_details"] = {
            "orderId": status.order_id if status else None,
            "amount": status.amount if status else None,
            "failedAt": now,
            "source": source.value if source else None,
            "reason": (status.reason if status else None) or "Payment failed",
            "merchantOrderId": pass_row.get("merchant_order_id"),
        }
    return changes

def _ensure_entry_tokens(pass_row: Dict[str, Any]) -> None:
    """
    Crée les jetons des places qui n'en ont pas encore.
    unique(pass_id, seat_index) rejette l'insert d'un appel concurrent: on relit
    alors les jetons et seule une place toujours manquante fait remonter l'erreur.
    """
    existing = repository.list_entry_tokens(pass_row["id"])
    missing = tokens.missing_entry_tokens(pass_row, existing)
    if not missing:
        return
    try:
        created = repository.insert_entry_tokens(missing)
    except InternalError:
        if tokens.missing_entry_tokens(pass_row, repository.list_entry_tokens(pass_row["id"])):
            raise
        logger.info("reconciliation.tokens created concurrently pass_id=%s", pass_row.get("id"))
        return
    logger.info("reconciliation.tokens pass_id=%s created=%s", pass_row.get("id"), len(created))

def _count_active_pass(pass_row: Dict[str, Any]) -> None:
    """
    Incrémente le compteur du propriétaire une seule fois par pass.
    active_pass_counted est réservé par mise à jour conditionnelle avant l'appel RPC,
    puis relâché si le RPC échoue pour qu'une relance puisse le rejouer.
    """
    if pass_row.get("active_pass_counted") or not pass_row.get("user_id"):
        return
    claimed = repository.update_pass_if(
        {"id": pass_row["id"], "active_pass_counted": False}, {"active_pass_counted": True},
    )
    if claimed is None:
        return
    try:
        users_repository.increment_active_passes(pass_row["user_id"])
    except InternalError:
        repository.update_pass_if({"id": pass_row["id"], "active_pass_counted": True}, {"active_pass_counted": False})
        raise

def _run_effects(transition: Transition, updated: Dict[str, Any]) -> None:
    if Effect.CREATE_ENTRY_TOKENS in transition.effects:
        _ensure_entry_tokens(updated)
    if Effect.INCREMENT_ACTIVE_PASSES in transition.effects:
        _count_active_pass(updated)

def apply_transition(pass_row: Dict[str, Any], event: PassEvent, *, status: Optional[GatewayStatus] = None,
                     source: Optional[Source] = None) -> Optional[Dict[str, Any]]:
    """
    Applique l'événement au pass si la table des transitions l'autorise.
    - Retourne la ligne mise à jour si CET appel a effectué la transition.
    - Retourne None si aucune transition n'existe depuis l'état lu, ou si le
      prédicat ne tenait plus au moment de l'écriture (un autre déclencheur est passé avant).
    """
    transition = state.next_transition(pass_row.get("status"), pass_row.get("payment_status"), event)
    if transition is None:
        return None
    match = {"id": pass_row["id"], **transition.guard}
    updated = repository.update_pass_if(match, _transition_changes(transition, pass_row, status, source))
    if updated is None:
        return None
    _run_effects(transition, updated)
    return updated

# --- Confirmation / échec ---

def confirm_payment(merchant_order_id: str, status: Optional[GatewayStatus], source: Source) -> Dict[str, Any]:
    """
    Confirme le paiement d'un pass (idempotent).
    - Pass introuvable => NotFoundError
    - payment_status déjà 'completed' => alreadyProcessed=True; les effets
      restés incomplets (jetons manquants, compteur non incrémenté) sont rejoués
    - pass terminal (payment_failed/expired) => inchangé, alreadyProcessed=True
    - sinon pending -> active, passUUID, jetons d'entrée, compteur utilisateur
    """
    logger.info("reconciliation.confirm source=%s merchant_order_id=%s", source.value, merchant_order_id)
    pass_row = lookup_by_order(merchant_order_id)

    if state.is_already_confirmed(pass_row.get("payment_status")):
        logger.info("reconciliation.confirm already processed pass_id=%s", pass_row.get("id"))
        _ensure_entry_tokens(pass_row)
        _count_active_pass(pass_row)
        return _outcome(pass_row, source, success=True, message="Payment already confirmed",
                        applied=False, already_processed=True)

    updated = apply_transition(pass_row, PassEvent.PAYMENT_COMPLETED, status=status, source=source)
    if updated is None:
        current = repository.get_pass_by_order(merchant_order_id) or pass_row
        confirmed = state.is_already_confirmed(current.get("payment_status"))
        logger.info(
            "reconciliation.confirm no-op pass_id=%s status=%s payment_status=%s",
            current.get("id"), current.get("status"), current.get("payment_status"),
        )
        message = "Payment already confirmed" if confirmed else f"Pass already processed (status={current.get('status')})"
        return _outcome(current, source, success=confirmed, message=message, applied=False, already_processed=True)

    logger.info("reconciliation.confirm applied pass_id=%s pass_uuid=%s", updated.get("id"), updated.get("pass_uuid"))
    return _outcome(updated, source, success=True, message="Payment confirmed successfully", applied=True)

def fail_payment(merchant_order_id: str, status: Optional[GatewayStatus], source: Source) -> Dict[str, Any]:
    """
    Enregistre l'échec du paiement d'un pass encore 'pending'.
    Sans pass 'pending' correspondant (inconnu, déjà confirmé, expiré), l'échec est ignoré.
    """
    logger.info("reconciliation.fail source=%s merchant_order_id=%s", source.value, merchant_order_id)
    pass_row = repository.get_pass_by_order(merchant_order_id) if merchant_order_id else None
    if not pass_row:
        logger.warning("reconciliation.fail ignored: no pass for merchant_order_id=%s", merchant_order_id)
        return _outcome(None, source, success=False, message="Payment failed", applied=False)

    updated = apply_transition(pass_row, PassEvent.PAYMENT_FAILED, status=status, source=source)
    if updated is None:
        logger.info(
            "reconciliation.fail ignored pass_id=%s status=%s", pass_row.get("id"), pass_row.get("status"),
        )
        current = repository.get_pass_by_order(merchant_order_id) or pass_row
        return _outcome(current, source, success=False, message="Payment failed", applied=False)

    return _outcome(updated, source, success=False, message="Payment failed", applied=True)

def reconcile(merchant_order_id: str, status: GatewayStatus, source: Any) -> Dict[str, Any]:
    """
    Point d'entrée unique: applique un statut PhonePe normalisé au pass de l'ordre.
    'source' est uniquement tracé (payment_details.source), il ne change pas la logique.
    """
    src = _source(source)
    if not merchant_order_id:
        raise ValidationError("merchantOrderId requis", reason="merchant_order_id_required")
    if status.state == GatewayState.COMPLETED:
        return confirm_payment(merchant_order_id, status, src)
    if status.state == GatewayState.FAILED:
        return fail_payment(merchant_order_id, status, src)

    pass_row = repository.get_pass_by_order(merchant_order_id)
    return _outcome(pass_row, src, success=False, message="Payment pending", applied=False)

def query_remote_status(merchant_order_id: str, auto_apply: bool = False,
                        source: Any = Source.STATUS_CHECK) -> GatewayStatus:
    """
    Interroge PhonePe pour l'état réel de l'ordre.
    - auto_apply: applique immédiatement le résultat via reconcile()
    - GatewayError si PhonePe est injoignable (pas de retry)
    """
    if not merchant_order_id:
        raise ValidationError("merchantOrderId requis", reason="merchant_order_id_required")
    status = phonepe_client.get_gateway().get_order_status(merchant_order_id)
    if auto_apply and status.state != GatewayState.PENDING:
        reconcile(merchant_order_id, status, source)
    return status

def retry_payment_processing(merchant_order_id: Optional[str]) -> Dict[str, Any]:
    """Relance opérateur: réinterroge PhonePe et applique le résultat."""
    if not merchant_order_id:
        raise ValidationError("merchantOrderId is required", reason="merchant_order_id_required")
    logger.info("reconciliation.retry merchant_order_id=%s", merchant_order_id)
    status = query_remote_status(merchant_order_id, auto_apply=True)
    return {
        "success": True,
        "message": "Payment processing retried successfully",
        "status": status.state.value,
        "merchantOrderId": merchant_order_id,
    }
