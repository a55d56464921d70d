"""
Garde d'autorisation des requêtes.

Machine à états, chaque transition ratée est terminale (pas de rejeu) :
    Non authentifié --(jeton)--> Authentifié --(organisation)--> Délimité
    --(rôle)--> Autorisé --> le handler s'exécute

Le garde ne filtre aucune requête : il contrôle seulement l'entrée. Le handler
reçoit l'org_id résolu et doit l'appliquer à chacune de ses opérations.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.auth_errors import AuthError, ForbiddenError, MissingOrgIdError
from app.database import get_db
from app.schemas.auth import Identity, ResolvedScope
from app.services.identity_service import get_identity
from app.services.org_resolver import resolve_scope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuardConfig:
    require_org: bool = True
    allowed_roles: Tuple[str, ...] = ()
    match_any_role: bool = False       # True : n'importe quel rôle détenu suffit, pas seulement l'actif
    allow_default_org: bool = False    # contextes non critiques uniquement


@dataclass(frozen=True)
class AuthContext:
    """Ce qu'un handler reçoit une fois la requête autorisée."""

    identity: Identity
    org_id: Optional[str]
    roles: List[str] = field(default_factory=list)
    active_role: Optional[str] = None
    org_source: Optional[str] = None

    @property
    def org_uuid(self) -> Optional[uuid.UUID]:
        return _parse_uuid(self.org_id)

    @property
    def user_uuid(self) -> Optional[uuid.UUID]:
        return _parse_uuid(self.identity.id)


def _parse_uuid(value: Optional[str]) -> Optional[uuid.UUID]:
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _check_roles(scope: ResolvedScope, config: GuardConfig, identity: Identity) -> None:
    if not config.allowed_roles:
        return
    held = scope.roles if config.match_any_role else [scope.active_role]
    if not any(role in config.allowed_roles for role in held):
        logger.info(
            "Accès refusé à %s : rôle actif %s, rôles %s, autorisés %s",
            identity.id, scope.active_role, scope.roles, list(config.allowed_roles),
        )
        raise ForbiddenError(f"Accès refusé : le rôle '{scope.active_role}' n'est pas autorisé.")


def check(request: Request, db: Optional[Session], config: GuardConfig) -> AuthContext:
    """
    Fait passer la requête par les trois contrôles et retourne le contexte autorisé.
    Lève AuthRequiredError (401), MissingOrgIdError (400), ForbiddenError (403)
    ou OrgLookupError (503).
    """
    identity = get_identity(request)

    scope = resolve_scope(
        identity,
        db,
        require_org=config.require_org,
        use_default=config.allow_default_org,
    )
    if config.require_org and _parse_uuid(scope.org_id) is None:
        raise MissingOrgIdError(f"org_id invalide pour cet utilisateur : {scope.org_id!r}.")

    _check_roles(scope, config, identity)

    return AuthContext(
        identity=identity,
        org_id=scope.org_id,
        roles=list(scope.roles),
        active_role=scope.active_role,
        org_source=scope.org_source,
    )


def error_response(exc: AuthError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


def authorize(
    request: Request,
    db: Optional[Session],
    config: GuardConfig,
    handler: Callable[[Identity, Optional[str], List[str]], object],
):
    """
    Enveloppe un handler : en cas d'échec du garde, retourne la réponse d'erreur
    sans jamais appeler le handler ; sinon retourne handler(identity, org_id, roles).
    """
    try:
        context = check(request, db, config)
    except AuthError as exc:
        return error_response(exc)
    return handler(context.identity, context.org_id, context.roles)


def require_auth(
    *allowed_roles: str,
    require_org: bool = True,
    match_any_role: bool = False,
    allow_default_org: bool = False,
):
    """
    Fabrique de dépendance FastAPI.
    Les AuthError levées sont converties en {"error": ...} par le handler de main.py.
    """
    config = GuardConfig(
        require_org=require_org,
        allowed_roles=tuple(allowed_roles),
        match_any_role=match_any_role,
        allow_default_org=allow_default_org,
    )

    def dependency(request: Request, db: Session = Depends(get_db)) -> AuthContext:
        return check(request, db, config)

    return dependency
