"""
Adaptateur PhonePe: centralise les appels HTTP vers la passerelle de paiement.

- Configuration explicite (GatewaySettings) injectée à la construction;
  get_gateway() fabrique l'instance partagée à partir de backend.config.
- Jeton OAuth (client_credentials) mis en cache jusqu'à son expiration.
- Toute erreur HTTP / timeout devient GatewayError (message amont conservé).
  Aucun retry automatique: l'appelant ou un opérateur relance.
"""
import hashlib
import json
import logging
import secrets
import threading
import time
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from backend import config
from backend.passes.errors import GatewayError
from backend.payments.status import GatewayStatus, normalize_status

logger = logging.getLogger(__name__)

# Marge de sécurité avant expiration du jeton OAuth (secondes)
TOKEN_REFRESH_MARGIN = 60

class GatewaySettings(BaseModel):
    auth_url: str
    base_url: str
    client_id: str = ""
    client_secret: str = ""
    client_version: str = "1"
    webhook_username: str = ""
    webhook_password: str = ""
    order_expire_seconds: int = 1200
    auth_timeout: float = 10.0
    status_timeout: float = 10.0
    create_timeout: float = 15.0

    @property
    def webhook_signature_enabled(self) -> bool:
        return bool(self.webhook_username and self.webhook_password)

def gateway_settings() -> GatewaySettings:
    """Construit la configuration PhonePe depuis backend.config (seul point de lecture de l'environnement)."""
    return GatewaySettings(
        auth_url=config.PHONEPE_AUTH_URL,
        base_url=config.PHONEPE_BASE_URL,
        client_id=config.PHONEPE_CLIENT_ID,
        client_secret=config.PHONEPE_CLIENT_SECRET,
        client_version=config.PHONEPE_CLIENT_VERSION,
        webhook_username=config.PHONEPE_WEBHOOK_USERNAME,
        webhook_password=config.PHONEPE_WEBHOOK_PASSWORD,
        order_expire_seconds=config.PHONEPE_ORDER_EXPIRE_SECONDS,
    )

def _upstream_message(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            body = exc.response.json()
            return str(body.get("message") or body.get("code") or body)
        except Exception:
            return exc.response.text or str(exc)
    return str(exc) or exc.__class__.__name__

class PhonePeClient:
    def __init__(self, settings: GatewaySettings, http: Optional[httpx.Client] = None):
        self.settings = settings
        self._http = http or httpx.Client()
        self._token: Optional[str] = None
        self._token_expires_at: float = 0.0
        self._lock = threading.Lock()

    # --- Authentification ---

    def authenticate(self) -> str:
        """
        Retourne un jeton d'accès valide.
        - Réutilise le jeton en cache tant qu'il n'expire pas dans les TOKEN_REFRESH_MARGIN secondes.
        - Sinon POST form-urlencoded sur auth_url (grant_type=client_credentials).
        """
        with self._lock:
            if self._token and time.time() < self._token_expires_at - TOKEN_REFRESH_MARGIN:
                return self._token
            logger.info("phonepe.authenticate requesting access token")
            try:
                resp = self._http.post(
                    self.settings.auth_url,
                    data={
                        "client_id": self.settings.client_id,
                        "client_secret": self.settings.client_secret,
                        "client_version": self.settings.client_version,
                        "grant_type": "client_credentials",
                    },
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    timeout=self.settings.auth_timeout,
                )
                resp.raise_for_status()
                body = resp.json()
            except Exception as e:
                message = _upstream_message(e)
                logger.error("phonepe.authenticate failed: %s", message)
                raise GatewayError(f"Authentication failed: {message}", reason="gateway_auth_failed", upstream=message)

            token = body.get("access_token")
            if not token:
                raise GatewayError("Authentication failed: access_token manquant", reason="gateway_auth_failed")
            self._token = token
            try:
                self._token_expires_at = float(body.get("expires_at") or 0)
            except (TypeError, ValueError):
                self._token_expires_at = 0.0
            return token

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"O-Bearer {self.authenticate()}",
        }

    # --- Ordres ---

    def create_order(
        self,
        *,
        merchant_order_id: str,
        amount_minor_units: int,
        metadata: Dict[str, Any],
        redirect_url: str,
    ) -> Dict[str, Any]:
        """
        Crée un ordre de paiement PhonePe (PG_CHECKOUT).
        - amount_minor_units: montant total en paise
        - metadata: {user_id, event_id, pass_type, friends} => metaInfo.udf1..udf4
        - redirect_url: URL de callback navigateur (backend)
        Retour: {"gatewayOrderId": ..., "paymentUrl": ...}
        """
        payload = {
            "merchantOrderId": merchant_order_id,
            "amount": amount_minor_units,
            "expireAfter": self.settings.order_expire_seconds,
            "metaInfo": {
                "udf1": str(metadata.get("user_id") or ""),
                "udf2": str(metadata.get("event_id") or ""),
                "udf3": str(metadata.get("pass_type") or "General"),
                "udf4": json.dumps(metadata.get("friends") or [])[:256],
            },
            "paymentFlow": {
                "type": "PG_CHECKOUT",
                "message": "Event pass booking",
                "merchantUrls": {"redirectUrl": redirect_url},
            },
        }
        logger.info("phonepe.create_order merchant_order_id=%s amount=%s", merchant_order_id, amount_minor_units)
        headers = self._headers()
        try:
            resp = self._http.post(
                f"{self.settings.base_url}/checkout/v2/pay",
                json=payload,
                headers=headers,
                timeout=self.settings.create_timeout,
            )
            resp.raise_for_status()
            body = resp.json() or {}
        except Exception as e:
            message = _upstream_message(e)
            logger.error("phonepe.create_order failed merchant_order_id=%s: %s", merchant_order_id, message)
            raise GatewayError(f"Order creation failed: {message}", reason="gateway_order_failed", upstream=message)

        data = body.get("data") if isinstance(body.get("data"), dict) else body
        return {"gatewayOrderId": data.get("orderId"), "paymentUrl": data.get("redirectUrl")}

    def get_order_status(self, merchant_order_id: str) -> GatewayStatus:
        """Interroge /checkout/v2/order/{id}/status et renvoie le statut normalisé."""
        headers = self._headers()
        try:
            resp = self._http.get(
                f"{self.settings.base_url}/checkout/v2/order/{merchant_order_id}/status",
                headers=headers,
                timeout=self.settings.status_timeout,
            )
            resp.raise_for_status()
            body = resp.json()
        except Exception as e:
            message = _upstream_message(e)
            logger.error("phonepe.get_order_status failed merchant_order_id=%s: %s", merchant_order_id, message)
            raise GatewayError(f"Status check failed: {message}", reason="gateway_status_failed", upstream=message)

        if not isinstance(body, dict):
            raise GatewayError("Réponse de statut PhonePe invalide", reason="gateway_invalid_response")
        status = normalize_status(body)
        logger.info("phonepe.get_order_status merchant_order_id=%s state=%s", merchant_order_id, status.state.value)
        return status

    # --- Webhook ---

    def expected_webhook_signature(self) -> str:
        credentials = f"{self.settings.webhook_username}:{self.settings.webhook_password}"
        return hashlib.sha256(credentials.encode("utf-8")).hexdigest()

    def verify_webhook_signature(self, received_signature: Optional[str]) -> bool:
        """
        Compare (temps constant) la signature reçue à sha256("username:password").
        - Si aucun identifiant webhook n'est configuré: vérification désactivée => True.
        """
        if not self.settings.webhook_signature_enabled:
            return True
        if not received_signature:
            return False
        return secrets.compare_digest(received_signature.strip().lower(), self.expected_webhook_signature())

_gateway: Optional[PhonePeClient] = None

def get_gateway() -> PhonePeClient:
    global _gateway
    if _gateway is None:
        _gateway = PhonePeClient(gateway_settings())
    return _gateway
