"""
Module 'payments' (feature-first): point d'entrée public.
Réunit le client PhonePe, la normalisation des statuts et le moteur de réconciliation.
"""

from .status import GatewayState, GatewayStatus, normalize_status, state_from_webhook_event
from .phonepe_client import GatewaySettings, PhonePeClient, gateway_settings, get_gateway
from .service import (
    Source,
    apply_transition,
    confirm_payment,
    fail_payment,
    lookup_by_order,
    query_remote_status,
    reconcile,
    retry_payment_processing,
)

__all__ = [
    # status
    "GatewayState",
    "GatewayStatus",
    "normalize_status",
    "state_from_webhook_event",
    # phonepe
    "GatewaySettings",
    "PhonePeClient",
    "gateway_settings",
    "get_gateway",
    # réconciliation
    "Source",
    "apply_transition",
    "confirm_payment",
    "fail_payment",
    "lookup_by_order",
    "query_remote_status",
    "reconcile",
    "retry_payment_processing",
]
