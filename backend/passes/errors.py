"""
Taxonomie d'erreurs métier (pass, paiements, validation d'entrée).
Chaque erreur porte un message lisible, un code 'reason' stable pour le front,
et le statut HTTP associé; la traduction en réponse JSON est faite par
backend.app_setup.exceptions.
"""
from typing import Optional

class PassError(Exception):
    status_code = 500

    def __init__(self, message: str, reason: str = "error", upstream: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.upstream = upstream

class ValidationError(PassError):
    status_code = 400

class NotFoundError(PassError):
    status_code = 404

class CapacityError(PassError):
    status_code = 400

class AlreadyRedeemedError(PassError):
    status_code = 400

class AuthorizationError(PassError):
    status_code = 403

class GatewayError(PassError):
    """Échec (ou timeout) de l'API PhonePe; 'upstream' contient le message distant."""
    status_code = 500

class InternalError(PassError):
    status_code = 500
