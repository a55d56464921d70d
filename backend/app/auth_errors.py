"""
Erreurs du garde d'autorisation.

Chaque erreur porte le code HTTP qui lui correspond. Elles sont terminales pour
la requête : aucune n'est rejouée, aucune n'est masquée par une valeur par défaut.
"""


class AuthError(Exception):
    status_code = 500
    default_message = "Erreur d'authentification."

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthRequiredError(AuthError):
    """Aucune identité exploitable dans la requête (401)."""
    status_code = 401
    default_message = "Authentification requise."


class MissingOrgIdError(AuthError):
    """Identité présente mais aucune organisation résolue par aucune source (400)."""
    status_code = 400
    default_message = "org_id introuvable pour cet utilisateur. Contactez le support."


class ForbiddenError(AuthError):
    """Rôle non autorisé pour l'opération (403)."""
    status_code = 403
    default_message = "Accès refusé : rôle non autorisé."


class OrgLookupError(AuthError):
    """La lecture de l'enregistrement utilisateur a échoué (503, transitoire)."""
    status_code = 503
    default_message = "Service d'identité momentanément indisponible. Réessayez."
