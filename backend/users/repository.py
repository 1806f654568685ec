"""Couche d’accès aux données (Supabase) pour le domaine Utilisateurs.
Lecture du profil applicatif (table users) et compteur de pass actifs.
Les erreurs Supabase sont journalisées puis converties en InternalError, jamais en "introuvable".
"""
from typing import Any, Dict, Optional
import logging
import backend.infra.supabase_client as supabase_client
from backend.passes.errors import InternalError

logger = logging.getLogger(__name__)

def get_user_by_id(user_id: str) -> Optional[dict]:
    """Récupère un utilisateur par id (table users).
    - Champs utiles: id, email, role, phone, active_passes
    - Retour: dict utilisateur ou None si introuvable
    - InternalError si Supabase échoue
    """
    if not user_id:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("users")
            .select("*")
            .eq("id", user_id)
            .limit(1)
            .execute()
        )
    except Exception:
        logger.exception("users.repository.get_user_by_id failed user_id=%s", user_id)
        raise InternalError("Erreur d'accès aux données", reason="store_get_user_failed")
    rows = res.data or []
    return rows[0] if rows else None

def increment_active_passes(user_id: str) -> None:
    """Incrémente users.active_passes de façon atomique côté base.
    - Passe par la fonction SQL increment_active_passes(p_user_id) (RPC PostgREST),
      un read-modify-write côté Python ne serait pas sûr en concurrence.
    - InternalError si l'appel échoue (l'appelant décide de rejouer)
    """
    try:
        supabase_client.get_service_supabase().rpc("increment_active_passes", {"p_user_id": user_id}).execute()
    except Exception:
        logger.exception("users.repository.increment_active_passes failed user_id=%s", user_id)
        raise InternalError("Erreur d'accès aux données", reason="store_increment_active_passes_failed")

def get_user_from_access_token(access_token: str) -> Dict[str, Any]:
    """Récupère l’utilisateur Supabase Auth correspondant au jeton (supabase.auth.get_user)."""
    res = supabase_client.get_supabase().auth.get_user(access_token)
    user = getattr(res, "user", None)
    if user is None:
        return {}
    return {
        "id": getattr(user, "id", None),
        "email": getattr(user, "email", None),
        "user_metadata": getattr(user, "user_metadata", None) or {},
    }
