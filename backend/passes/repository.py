"""
Accès aux données 'passes' (tables passes + pass_entry_tokens).

Toutes les écritures d'état passent par des mises à jour conditionnelles:
l'UPDATE PostgREST porte le prédicat (ex: status=pending) et renvoie les
lignes réellement modifiées. Une liste vide signifie que le prédicat ne
tenait plus au moment de l'écriture (course perdue), ce que les services
interprètent comme "déjà traité".

Les erreurs Supabase/PostgREST sont journalisées puis converties en
InternalError: un échec technique ne doit jamais être confondu avec
"pass introuvable" ou "course perdue".
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

import backend.infra.supabase_client as supabase_client
from backend.passes.errors import InternalError

logger = logging.getLogger(__name__)

PASSES_TABLE = "passes"
TOKENS_TABLE = "pass_entry_tokens"

def _rows(res) -> List[Dict[str, Any]]:
    data = getattr(res, "data", None) or []
    if isinstance(data, dict):
        return [data]
    return list(data)

def _first(res) -> Optional[Dict[str, Any]]:
    rows = _rows(res)
    return rows[0] if rows else None

def _fail(action: str, **ctx) -> InternalError:
    logger.exception("passes.repository.%s failed %s", action, ctx)
    return InternalError("Erreur d'accès aux données", reason=f"store_{action}_failed")

# --- Passes ---

def insert_pass(row: Dict[str, Any]) -> Dict[str, Any]:
    """
    Insère un pass 'pending'. merchant_order_id porte une contrainte UNIQUE:
    une collision remonte en InternalError (précondition dure, pas de retry).
    """
    try:
        res = supabase_client.get_service_supabase().table(PASSES_TABLE).insert(row).execute()
    except Exception:
        raise _fail("insert_pass", merchant_order_id=row.get("merchant_order_id"))
    created = _first(res)
    if not created:
        raise InternalError("Impossible de créer le pass", reason="pass_not_created")
    return created

def _find_one(action: str, **filters) -> Optional[Dict[str, Any]]:
    try:
        query = supabase_client.get_service_supabase().table(PASSES_TABLE).select("*")
        for column, value in filters.items():
            query = query.eq(column, value)
        return _first(query.limit(1).execute())
    except Exception:
        raise _fail(action, **filters)

def get_pass_by_id(pass_id: str) -> Optional[Dict[str, Any]]:
    return _find_one("get_pass_by_id", id=pass_id)

def get_pass_by_order(merchant_order_id: str) -> Optional[Dict[str, Any]]:
    return _find_one("get_pass_by_order", merchant_order_id=merchant_order_id)

def get_pass_by_uuid(pass_uuid: str, status: Optional[str] = None) -> Optional[Dict[str, Any]]:
    if status:
        return _find_one("get_pass_by_uuid", pass_uuid=pass_uuid, status=status)
    return _find_one("get_pass_by_uuid", pass_uuid=pass_uuid)

def list_passes_for_user_event(user_id: str, event_id: str, payment_status: str) -> List[Dict[str, Any]]:
    """Pass d'un utilisateur pour un événement, filtrés par statut de paiement (plus récents d'abord)."""
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(PASSES_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("event_id", event_id)
            .eq("payment_status", payment_status)
            .order("created_at", desc=True)
            .execute()
        )
        return _rows(res)
    except Exception:
        raise _fail("list_passes_for_user_event", user_id=user_id, event_id=event_id)

def list_expired_pending(now: datetime) -> List[Dict[str, Any]]:
    """Lecture initiale du sweeper: pass 'pending' dont expires_at < now."""
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(PASSES_TABLE)
            .select("id, merchant_order_id, status, payment_status, expires_at")
            .eq("status", "pending")
            .lt("expires_at", now.isoformat())
            .execute()
        )
        return _rows(res)
    except Exception:
        raise _fail("list_expired_pending", now=now.isoformat())

def update_pass_if(match: Dict[str, Any], changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Mise à jour conditionnelle (compare-and-swap):
    UPDATE passes SET <changes> WHERE <match> RETURNING *.
    - match contient l'identifiant (id ou merchant_order_id) et le prédicat d'état.
    - Retourne la ligne mise à jour, ou None si plus aucune ligne ne satisfait le prédicat.
    """
    if not match:
        raise ValueError("update_pass_if requires a non-empty match")
    try:
        query = supabase_client.get_service_supabase().table(PASSES_TABLE).update(changes)
        for column, value in match.items():
            query = query.eq(column, value)
        return _first(query.execute())
    except Exception:
        raise _fail("update_pass_if", match=match)

# --- Entry tokens ---

def insert_entry_tokens(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not rows:
        return []
    try:
        res = supabase_client.get_service_supabase().table(TOKENS_TABLE).insert(rows).execute()
        return _rows(res)
    except Exception:
        raise _fail("insert_entry_tokens", pass_id=rows[0].get("pass_id"), count=len(rows))

def list_entry_tokens(pass_id: str) -> List[Dict[str, Any]]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(TOKENS_TABLE)
            .select("*")
            .eq("pass_id", pass_id)
            .order("seat_index", desc=False)
            .execute()
        )
        return _rows(res)
    except Exception:
        raise _fail("list_entry_tokens", pass_id=pass_id)

def get_entry_token(pass_id: str, token_id: str) -> Optional[Dict[str, Any]]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(TOKENS_TABLE)
            .select("*")
            .eq("pass_id", pass_id)
            .eq("id", token_id)
            .limit(1)
            .execute()
        )
        return _first(res)
    except Exception:
        raise _fail("get_entry_token", pass_id=pass_id, token_id=token_id)

def mark_token_scanned(pass_id: str, token_id: str, scanned_at: datetime) -> Optional[Dict[str, Any]]:
    """
    Marque un jeton comme scanné en une seule écriture gardée:
    UPDATE ... SET scanned_at=now WHERE id=token AND pass_id=pass AND scanned_at IS NULL.
    Retourne None si le jeton était déjà scanné (ou absent).
    """
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(TOKENS_TABLE)
            .update({"scanned_at": scanned_at.isoformat()})
            .eq("id", token_id)
            .eq("pass_id", pass_id)
            .is_("scanned_at", "null")
            .execute()
        )
        return _first(res)
    except Exception:
        raise _fail("mark_token_scanned", pass_id=pass_id, token_id=token_id)
