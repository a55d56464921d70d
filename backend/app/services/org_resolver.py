"""
Résolution de la portée d'une requête : organisation + rôles.

Sources de l'org_id, essayées dans l'ordre, la première non vide gagne :
1. métadonnées du jeton (org_id, ou ses alias historiques déjà migrés)
2. enregistrement utilisateur persisté (users.org_id)
3. organisation par défaut configurée, uniquement si l'appelant l'autorise
   (contextes non critiques, ex. inscription) ; jamais pour une route isolée

Rôles : ceux des métadonnées, sinon [BASELINE_ROLE]. Le rôle actif est celui des
métadonnées s'il fait partie des rôles détenus, sinon roles[0].
"""

import logging
import uuid
from typing import Callable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.auth_errors import MissingOrgIdError, OrgLookupError
from app.config import settings
from app.models.user import User
from app.schemas.auth import Identity, ResolvedScope, UserMetadata

logger = logging.getLogger(__name__)

OrgStrategy = Callable[[Identity, Optional[Session]], Optional[str]]


def get_org_id(db: Session, user_id: str) -> Optional[str]:
    """
    Lit users.org_id pour un identifiant d'utilisateur.
    None si l'utilisateur est inconnu ou sans organisation.
    Lève OrgLookupError si la base ne répond pas (à ne pas confondre avec « absent »).
    """
    try:
        uid = uuid.UUID(str(user_id))
    except ValueError:
        return None

    try:
        org_id = db.execute(select(User.org_id).where(User.id == uid)).scalar()
    except SQLAlchemyError as exc:
        logger.error("Lecture de users.org_id impossible pour %s : %s", user_id, exc)
        raise OrgLookupError() from exc

    return str(org_id) if org_id else None


def _from_metadata(identity: Identity, db: Optional[Session]) -> Optional[str]:
    return identity.metadata.org_id


def _from_user_record(identity: Identity, db: Optional[Session]) -> Optional[str]:
    if db is None:
        return None
    return get_org_id(db, identity.id)


def _from_default(identity: Identity, db: Optional[Session]) -> Optional[str]:
    return settings.DEFAULT_ORG_ID


ORG_STRATEGIES: List[Tuple[str, OrgStrategy]] = [
    ("metadata", _from_metadata),
    ("user_record", _from_user_record),
]
DEFAULT_STRATEGY: Tuple[str, OrgStrategy] = ("default", _from_default)


def resolve_org_id(
    identity: Identity,
    db: Optional[Session],
    use_default: bool = False,
) -> Tuple[Optional[str], Optional[str]]:
    """Retourne (org_id, source), ou (None, None) si aucune source ne répond."""
    strategies = ORG_STRATEGIES + ([DEFAULT_STRATEGY] if use_default else [])
    for source, strategy in strategies:
        value = strategy(identity, db)
        if value:
            return value, source
    return None, None


def resolve_roles(metadata: UserMetadata) -> Tuple[List[str], str, List[str]]:
    """Retourne (roles, rôle actif, avertissements)."""
    warnings: List[str] = []
    roles = list(metadata.roles)
    if not roles:
        roles = [settings.BASELINE_ROLE]
        warnings.append(f"aucun rôle dans les métadonnées, rôle de base '{settings.BASELINE_ROLE}' appliqué")

    active = metadata.active_role
    if active not in roles:
        if active is not None:
            warnings.append(f"activeRole '{active}' non détenu, repli sur '{roles[0]}'")
        active = roles[0]

    return roles, active, warnings


def resolve_scope(
    identity: Identity,
    db: Optional[Session],
    *,
    require_org: bool = True,
    use_default: bool = False,
) -> ResolvedScope:
    """
    Résout l'organisation et les rôles d'une identité.

    Lève MissingOrgIdError si require_org est vrai et qu'aucune source ne fournit
    d'org_id : aucune opération isolée ne doit s'exécuter avec une portée nulle.
    """
    org_id, source = resolve_org_id(identity, db, use_default=use_default)
    roles, active, warnings = resolve_roles(identity.metadata)

    if source and source != "metadata":
        warnings.append(f"org_id absent des métadonnées, résolu via '{source}'")

    for warning in warnings:
        logger.warning("Métadonnées incohérentes pour %s : %s", identity.id, warning)

    if org_id is None and require_org:
        logger.warning("Aucune organisation résolue pour l'utilisateur %s", identity.id)
        raise MissingOrgIdError()

    return ResolvedScope(
        org_id=org_id,
        org_source=source,
        roles=roles,
        active_role=active,
        warnings=warnings,
    )
