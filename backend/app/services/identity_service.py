"""
Extraction de l'identité depuis la requête.

Le jeton porteur (Authorization: Bearer <jwt>, signé avec SECRET_KEY) contient :
- sub           : identifiant opaque de l'utilisateur
- email
- user_metadata : sac de métadonnées (roles, activeRole, org_id, ...)

Le sac est migré vers UserMetadata v2 ici, à la frontière, pour que le reste
du code ne manipule jamais de dictionnaire libre.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

from fastapi import Request
from jose import JWTError, jwt
from pydantic import ValidationError

from app.auth_errors import AuthRequiredError
from app.config import settings
from app.schemas.auth import METADATA_VERSION, ROLE_ALIASES, VALID_ROLES, Identity, UserMetadata

logger = logging.getLogger(__name__)

ORG_ID_KEYS = ("org_id", "organization_id", "orgId")


def _normalize_role(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    role = value.strip().lower()
    role = ROLE_ALIASES.get(role, role)
    return role if role in VALID_ROLES else None


def _migrate_roles(raw: dict) -> List[str]:
    candidates = raw.get("roles") or []
    if isinstance(candidates, str):
        candidates = [candidates]
    if raw.get("role"):  # v1 : rôle unique
        candidates = list(candidates) + [raw["role"]]

    roles: List[str] = []
    for candidate in candidates:
        role = _normalize_role(candidate)
        if role is None:
            logger.warning("Rôle inconnu ignoré dans les métadonnées : %r", candidate)
            continue
        if role not in roles:
            roles.append(role)
    return roles


def migrate_metadata(raw: Optional[dict]) -> UserMetadata:
    """
    Convertit le sac de métadonnées brut en UserMetadata (version courante).

    - org_id lu sous ses alias historiques (organization_id, orgId)
    - "role" unique (v1) fusionné dans roles
    - "parent" → "guardian", doublons et rôles inconnus retirés
    - activeRole conservé tel quel s'il est valide ; l'appartenance à roles
      est vérifiée par le résolveur, pas ici
    """
    if not isinstance(raw, dict):
        return UserMetadata()

    org_id = None
    for key in ORG_ID_KEYS:
        value = raw.get(key)
        if value is not None and str(value).strip():
            org_id = str(value).strip()
            break

    active = raw.get("activeRole", raw.get("active_role"))

    return UserMetadata(
        version=METADATA_VERSION,
        roles=_migrate_roles(raw),
        active_role=_normalize_role(active),
        org_id=org_id,
    )


def decode_token(token: str) -> Identity:
    """Vérifie la signature et l'expiration du jeton, retourne l'identité."""
    try:
        claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as exc:
        logger.debug("Jeton rejeté : %s", exc)
        raise AuthRequiredError("Jeton invalide ou expiré.") from exc

    subject = claims.get("sub")
    if not subject:
        raise AuthRequiredError("Jeton sans identifiant utilisateur.")

    try:
        return Identity(
            id=str(subject),
            email=claims.get("email"),
            metadata=migrate_metadata(claims.get("user_metadata")),
        )
    except ValidationError as exc:
        raise AuthRequiredError("Jeton invalide.") from exc


def get_identity(request: Request) -> Identity:
    """Lit le jeton porteur de la requête. Lève AuthRequiredError s'il est absent."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthRequiredError()
    return decode_token(token.strip())


def create_access_token(identity: Identity, expires_minutes: Optional[int] = None) -> str:
    """
    Émet un jeton pour l'identité donnée.
    Seule voie de modification des métadonnées (changement de rôle, provisionnement).
    """
    minutes = expires_minutes if expires_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
    claims = {
        "sub": identity.id,
        "email": identity.email,
        "user_metadata": identity.metadata.model_dump(by_alias=True),
        "exp": datetime.now(timezone.utc) + timedelta(minutes=minutes),
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
