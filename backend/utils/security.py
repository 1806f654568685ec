from fastapi import Request, HTTPException, Depends
from typing import Optional, Dict, Any
import logging

from backend.users import repository as users_repository

logger = logging.getLogger(__name__)

ROLES = ("user", "admin", "event_manager")

def determine_role(profile: Optional[Dict[str, Any]], metadata: Optional[Dict[str, Any]]) -> str:
    """
    Rôle applicatif: la table users fait foi, sinon user_metadata.role, sinon 'user'.
    Toute valeur inconnue est ramenée à 'user'.
    """
    role = str((profile or {}).get("role") or (metadata or {}).get("role") or "user").lower()
    return role if role in ROLES else "user"

def _token_from_request(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None

def get_current_user(request: Request) -> Dict[str, Any]:
    token = _token_from_request(request)
    if not token:
        raise HTTPException(status_code=401, detail="Non authentifié")

    try:
        auth_user = users_repository.get_user_from_access_token(token)
    except Exception:
        logger.info("security.get_current_user invalid or expired token")
        raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")
    if not auth_user.get("id"):
        raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")

    profile = users_repository.get_user_by_id(auth_user["id"])
    return {
        "id": auth_user["id"],
        "email": (profile or {}).get("email") or auth_user.get("email"),
        "role": determine_role(profile, auth_user.get("user_metadata")),
        "token": token,
    }

def require_user(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    return user
