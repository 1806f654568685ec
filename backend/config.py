# backend.config
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)

"""
Configuration centrale du backend.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, PhonePe), CORS/hosts
- Fournit les URLs de redirection (callback de paiement, pages front)
- Aucun module métier ne lit os.environ directement: ils passent par ces constantes
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _int_env(name: str, default: int) -> int:
    try:
        return int(_clean_env(os.getenv(name) or "") or default)
    except ValueError:
        return default

APP_ENV = _clean_env(os.getenv("APP_ENV") or "production").lower()

# Supabase: URL et clés (anon/service)
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or "")
SUPABASE_ANON = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# En-tête HSTS (derrière un proxy TLS)
FORCE_HSTS = (os.getenv("FORCE_HSTS", "false").lower() == "true")

# CORS (dev)
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]

# URL publique du backend (callback PhonePe, identifiants QR) et du front (redirections navigateur)
BASE_URL = _clean_env(os.getenv("BASE_URL") or "http://localhost:8000").rstrip("/")
FRONTEND_URL = _clean_env(os.getenv("FRONTEND_URL") or "http://localhost:3000").rstrip("/")

# PhonePe: environnement, identifiants client et URLs
# - PHONEPE_ENV=production|sandbox (sandbox par défaut)
# - PHONEPE_AUTH_URL / PHONEPE_BASE_URL surchargent les URLs par défaut
PHONEPE_ENV = _clean_env(os.getenv("PHONEPE_ENV") or "sandbox").lower()
PHONEPE_CLIENT_ID = _clean_env(os.getenv("PHONEPE_CLIENT_ID") or "")
PHONEPE_CLIENT_SECRET = _clean_env(os.getenv("PHONEPE_CLIENT_SECRET") or "")
PHONEPE_CLIENT_VERSION = _clean_env(os.getenv("PHONEPE_CLIENT_VERSION") or "1")

_PHONEPE_URLS = {
    "production": (
        "https://api.phonepe.com/apis/identity-manager/v1/oauth/token",
        "https://api.phonepe.com/apis/pg",
    ),
    "sandbox": (
        "https://api-preprod.phonepe.com/apis/pg-sandbox/v1/oauth/token",
        "https://api-preprod.phonepe.com/apis/pg-sandbox",
    ),
}
_default_auth_url, _default_base_url = _PHONEPE_URLS.get(PHONEPE_ENV, _PHONEPE_URLS["sandbox"])
PHONEPE_AUTH_URL = _clean_env(os.getenv("PHONEPE_AUTH_URL") or _default_auth_url)
PHONEPE_BASE_URL = _clean_env(os.getenv("PHONEPE_BASE_URL") or _default_base_url).rstrip("/")

# Webhook: identifiants partagés avec PhonePe (vides => vérification de signature désactivée)
PHONEPE_WEBHOOK_USERNAME = _clean_env(os.getenv("PHONEPE_WEBHOOK_USERNAME") or "")
PHONEPE_WEBHOOK_PASSWORD = _clean_env(os.getenv("PHONEPE_WEBHOOK_PASSWORD") or "")

# Durée de vie d'une commande/pass en attente et délai d'expiration côté PhonePe
PASS_TTL_MINUTES = _int_env("PASS_TTL_MINUTES", 20)
PHONEPE_ORDER_EXPIRE_SECONDS = _int_env("PHONEPE_ORDER_EXPIRE_SECONDS", 1200)

# Sweeper des pass expirés (0 => désactivé)
PASS_SWEEPER_INTERVAL_SECONDS = _int_env("PASS_SWEEPER_INTERVAL_SECONDS", 60)
