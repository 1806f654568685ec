import logging
import urllib.parse
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool
from starlette.status import HTTP_302_FOUND

from backend.config import FRONTEND_URL
from backend.passes.errors import PassError
from backend.passes.models import RetryRequest
from backend.passes.state import PassStatus
from backend.payments import phonepe_client
from backend.payments import service as reconciliation
from backend.payments.service import Source
from backend.payments.status import GatewayState, normalize_status, state_from_webhook_event
from backend.utils.security import require_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])

def _redirect(path: str, **params: Optional[str]) -> RedirectResponse:
    query = urllib.parse.urlencode({k: v or "" for k, v in params.items()}, quote_via=urllib.parse.quote_plus)
    return RedirectResponse(url=f"{FRONTEND_URL}{path}?{query}", status_code=HTTP_302_FOUND)

def _signature_from_header(value: Optional[str]) -> Optional[str]:
    # Format attendu: "SHA256 <signature>" (signature nue tolérée)
    if not value or not value.strip():
        return None
    scheme, _, signature = value.strip().partition(" ")
    if not signature:
        return scheme
    if scheme.upper() != "SHA256":
        return None
    return signature.strip() or None

@router.get("/callback/{merchant_order_id}", include_in_schema=False)
def payment_callback(merchant_order_id: str):
    """
    Retour navigateur après paiement PhonePe.
    - Réinterroge PhonePe, applique le résultat, puis redirige vers le front:
      /ticket/success, /ticket/failure, /ticket/pending
    - Ne renvoie jamais d'erreur JSON: toute exception redirige vers /ticket/error?reason=...
    """
    try:
        status = reconciliation.query_remote_status(merchant_order_id, auto_apply=True, source=Source.CALLBACK)
        pass_row = reconciliation.lookup_by_order(merchant_order_id)
    except Exception as e:
        logger.exception("payments.callback failed merchant_order_id=%s", merchant_order_id)
        reason = e.message if isinstance(e, PassError) else "Payment processing failed"
        return _redirect("/ticket/error", reason=reason)

    pass_status = pass_row.get("status")
    logger.info(
        "payments.callback merchant_order_id=%s state=%s pass_status=%s",
        merchant_order_id, status.state.value, pass_status,
    )
    if pass_status == PassStatus.ACTIVE.value:
        return _redirect("/ticket/success", passId=pass_row.get("id"), uuid=pass_row.get("pass_uuid"))
    if pass_status in (PassStatus.PAYMENT_FAILED.value, PassStatus.EXPIRED.value) or status.state == GatewayState.FAILED:
        return _redirect("/ticket/failure", passId=pass_row.get("id"), orderId=merchant_order_id)
    return _redirect("/ticket/pending", orderId=merchant_order_id)

@router.post("/webhook", include_in_schema=False)
async def payment_webhook(request: Request):
    """
    Webhook PhonePe: {"event": "checkout.order.completed|checkout.order.failed", "payload": {...}}
    - Signature: en-tête Authorization "SHA256 <sig>", vérifiée si les identifiants webhook sont configurés
    - Le payload est appliqué directement (pas de réinterrogation de PhonePe)
    - Réponses: 200 {"success", "event"}; 401 signature invalide; 500 erreur interne
    """
    gateway = phonepe_client.get_gateway()
    if gateway.settings.webhook_signature_enabled:
        if not gateway.verify_webhook_signature(_signature_from_header(request.headers.get("Authorization"))):
            logger.warning("payments.webhook rejected: invalid signature")
            return JSONResponse(status_code=401, content={"success": False, "error": "Invalid webhook signature"})
    else:
        logger.warning("payments.webhook signature check disabled (no webhook credentials configured)")

    try:
        body = await request.json()
    except ValueError:
        # Non rejouable: acquitté comme un ordre inconnu
        logger.warning("payments.webhook not applied: invalid JSON body")
        return {"success": False, "event": None, "reason": "invalid_payload"}
    body = body if isinstance(body, dict) else {}
    event = body.get("event")
    payload = body.get("payload") if isinstance(body.get("payload"), dict) else {}
    state = state_from_webhook_event(event)
    merchant_order_id = payload.get("merchantOrderId")
    logger.info("payments.webhook event=%s merchant_order_id=%s", event, merchant_order_id)

    if state is None:
        logger.info("payments.webhook ignored event=%s", event)
        return {"success": True, "event": event}

    try:
        outcome = await run_in_threadpool(
            reconciliation.reconcile, merchant_order_id, normalize_status(payload, state=state), Source.WEBHOOK,
        )
    except PassError as e:
        if e.status_code >= 500:
            raise
        # Ordre inconnu ou payload incomplet: acquitté pour éviter des rejeux sans fin
        logger.warning("payments.webhook not applied event=%s merchant_order_id=%s: %s", event, merchant_order_id, e.message)
        return {"success": False, "event": event, "reason": e.reason}
    return {"success": True, "event": event, "applied": outcome.get("applied")}

@router.get("/status/{merchant_order_id}")
def manual_status_check(merchant_order_id: str, user: Dict[str, Any] = Depends(require_user)):
    """Vérification manuelle: réinterroge PhonePe et applique le résultat (source=status_check)."""
    status = reconciliation.query_remote_status(merchant_order_id, auto_apply=True, source=Source.STATUS_CHECK)
    return {
        "success": True,
        "merchantOrderId": merchant_order_id,
        "status": status.state.value,
        "data": status.raw,
    }

@router.post("/retry")
def retry_payment(payload: RetryRequest, user: Dict[str, Any] = Depends(require_user)):
    return reconciliation.retry_payment_processing(payload.merchant_order_id)
