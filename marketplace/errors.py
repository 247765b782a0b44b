"""
Taxonomie d'erreurs du pipeline de règlement.
Chaque erreur porte un `code` stable, renvoyé au client par les exception handlers.
"""

class SettlementError(Exception):
    def __init__(self, message: str, code: str = "settlement_error"):
        super().__init__(message)
        self.code = code

class SessionCreationError(SettlementError):
    """Le processeur a refusé la session, ou la requête de checkout est inexploitable."""
    def __init__(self, message: str, code: str = "session_creation_failed"):
        super().__init__(message, code)

class UntrustedEventError(SettlementError):
    """Signature webhook absente ou invalide: aucun effet de bord."""
    def __init__(self, message: str, code: str = "untrusted_event"):
        super().__init__(message, code)

class MalformedMetadataError(SettlementError):
    """Métadonnées de session illisibles (ni panier ni réservation simple)."""
    def __init__(self, message: str, code: str = "malformed_metadata"):
        super().__init__(message, code)

class PersistenceError(SettlementError):
    def __init__(self, message: str, code: str = "persistence_failed"):
        super().__init__(message, code)

class NotificationError(SettlementError):
    def __init__(self, message: str, code: str = "notification_failed"):
        super().__init__(message, code)
