"""
Machine d'états d'un pass (source unique de vérité des transitions).

Tous les déclencheurs (callback navigateur, webhook PhonePe, vérification
manuelle, retry, rafraîchissement du statut, sweeper) passent par
next_transition(): elle décide de l'état suivant, des effets à appliquer,
et du prédicat 'guard' que le store doit réévaluer atomiquement au moment
de l'écriture (UPDATE ... WHERE guard).
"""
from enum import Enum
from typing import Dict, FrozenSet, NamedTuple, Optional, Tuple

class PassStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    PAYMENT_FAILED = "payment_failed"
    EXPIRED = "expired"

class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

class PassEvent(str, Enum):
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_FAILED = "payment_failed"
    EXPIRED = "expired"

class Effect(str, Enum):
    ASSIGN_UUID = "assign_uuid"
    CREATE_ENTRY_TOKENS = "create_entry_tokens"
    STAMP_CONFIRMATION = "stamp_confirmation"
    STAMP_FAILURE = "stamp_failure"
    INCREMENT_ACTIVE_PASSES = "increment_active_passes"

class Transition(NamedTuple):
    event: PassEvent
    to_status: PassStatus
    # None => payment_status inchangé
    to_payment_status: Optional[PaymentStatus]
    guard: Dict[str, str]
    effects: FrozenSet[Effect]

    def changes(self) -> Dict[str, str]:
        """Champs d'état écrits par la transition (hors horodatages/effets)."""
        out = {"status": self.to_status.value}
        if self.to_payment_status is not None:
            out["payment_status"] = self.to_payment_status.value
        return out

TERMINAL_STATUSES = frozenset({PassStatus.PAYMENT_FAILED, PassStatus.EXPIRED})

_TRANSITIONS: Dict[Tuple[PassStatus, PaymentStatus, PassEvent], Transition] = {
    (PassStatus.PENDING, PaymentStatus.PENDING, PassEvent.PAYMENT_COMPLETED): Transition(
        event=PassEvent.PAYMENT_COMPLETED,
        to_status=PassStatus.ACTIVE,
        to_payment_status=PaymentStatus.COMPLETED,
        guard={"status": PassStatus.PENDING.value, "payment_status": PaymentStatus.PENDING.value},
        effects=frozenset({
            Effect.ASSIGN_UUID,
            Effect.CREATE_ENTRY_TOKENS,
            Effect.STAMP_CONFIRMATION,
            Effect.INCREMENT_ACTIVE_PASSES,
        }),
    ),
    (PassStatus.PENDING, PaymentStatus.PENDING, PassEvent.PAYMENT_FAILED): Transition(
        event=PassEvent.PAYMENT_FAILED,
        to_status=PassStatus.PAYMENT_FAILED,
        to_payment_status=PaymentStatus.FAILED,
        guard={"status": PassStatus.PENDING.value},
        effects=frozenset({Effect.STAMP_FAILURE}),
    ),
    (PassStatus.PENDING, PaymentStatus.PENDING, PassEvent.EXPIRED): Transition(
        event=PassEvent.EXPIRED,
        to_status=PassStatus.EXPIRED,
        to_payment_status=None,
        guard={"status": PassStatus.PENDING.value},
        effects=frozenset(),
    ),
}

def next_transition(status: str, payment_status: str, event: PassEvent) -> Optional[Transition]:
    """
    Retourne la transition applicable, ou None si l'événement est sans effet
    (pass déjà confirmé, échoué ou expiré; paiement déjà 'completed').
    Les valeurs inconnues sont traitées comme sans transition.
    """
    try:
        key = (PassStatus(status), PaymentStatus(payment_status), PassEvent(event))
    except ValueError:
        return None
    return _TRANSITIONS.get(key)

def is_already_confirmed(payment_status: str) -> bool:
    return payment_status == PaymentStatus.COMPLETED.value
