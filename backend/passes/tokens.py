"""
Jetons d'entrée (un par place: acheteur + chaque ami) et schéma d'identifiants QR.
- Les jetons sont créés une seule fois, à la confirmation du paiement.
- Le QR encode uniquement une URL de vérification; le rendu image est hors périmètre.
"""
from typing import Any, Dict, List
from uuid import uuid4

from backend.config import BASE_URL

def entry_count(pass_row: Dict[str, Any]) -> int:
    return 1 + len(pass_row.get("friends") or [])

def _holder(friend: Any) -> Dict[str, Any]:
    if isinstance(friend, dict):
        return {"type": "friend", **friend}
    return {"type": "friend", "name": str(friend)}

def build_entry_tokens(pass_row: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Construit les lignes pass_entry_tokens d'un pass confirmé.
    - seat_index 0: acheteur; 1..N: amis dans l'ordre de la réservation
    - id: uuid4 opaque, jamais réutilisé
    """
    holders = [{"type": "buyer", "userId": pass_row.get("user_id")}]
    holders.extend(_holder(f) for f in (pass_row.get("friends") or []))
    return [
        {
            "id": str(uuid4()),
            "pass_id": pass_row["id"],
            "seat_index": index,
            "holder": holder,
            "scanned_at": None,
        }
        for index, holder in enumerate(holders)
    ]

def missing_entry_tokens(pass_row: Dict[str, Any], existing: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Lignes à créer pour les places qui n'ont pas encore de jeton."""
    taken = {t.get("seat_index") for t in existing}
    return [t for t in build_entry_tokens(pass_row) if t["seat_index"] not in taken]

def serialize_token(token: Dict[str, Any]) -> Dict[str, Any]:
    scanned_at = token.get("scanned_at")
    return {
        "id": token.get("id"),
        "seatIndex": token.get("seat_index"),
        "holder": token.get("holder"),
        "isScanned": scanned_at is not None,
        "scannedAt": scanned_at,
    }

def qr_identifier(pass_uuid: str) -> str:
    return f"{BASE_URL}/verify-ticket/{pass_uuid}"

def entry_token_identifier(pass_uuid: str, token_id: str) -> str:
    return f"{BASE_URL}/verify-ticket/{pass_uuid}/{token_id}"
