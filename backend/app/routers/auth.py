"""
Router pour le contexte utilisateur et le changement de rôle.

Le jeton est la seule source des métadonnées : changer de rôle revient à émettre
un nouveau jeton dont les métadonnées portent le nouveau rôle actif.
"""

from fastapi import APIRouter, Depends

from app.auth_errors import ForbiddenError
from app.guard import AuthContext, require_auth
from app.schemas.auth import Identity, SwitchRoleRequest, TokenResponse, UserContextResponse, UserMetadata
from app.services.identity_service import create_access_token

router = APIRouter(prefix="/api/v1/auth", tags=["Authentification"])


@router.get("/user-context", response_model=UserContextResponse, summary="Contexte de l'utilisateur courant")
def user_context(ctx: AuthContext = Depends(require_auth(require_org=False, allow_default_org=True))):
    """
    Identité, organisation et rôles tels que résolus pour cette requête.
    Contexte non critique : l'organisation par défaut peut servir de dernier recours
    (nouvel utilisateur pas encore rattaché).
    """
    return UserContextResponse(
        userId=ctx.identity.id,
        email=ctx.identity.email,
        orgId=ctx.org_id,
        orgSource=ctx.org_source,
        roles=ctx.roles,
        activeRole=ctx.active_role,
    )


@router.post("/switch-role", response_model=TokenResponse, summary="Changer de rôle actif")
def switch_role(
    data: SwitchRoleRequest,
    ctx: AuthContext = Depends(require_auth(require_org=False)),
):
    """
    Émet un jeton dont le rôle actif est `role`. Le rôle doit être détenu (403 sinon).
    L'org_id résolu est réinscrit dans les métadonnées.
    """
    if data.role not in ctx.roles:
        raise ForbiddenError(f"Rôle '{data.role}' non détenu par cet utilisateur.")

    metadata = UserMetadata(
        roles=ctx.roles,
        active_role=data.role,
        org_id=ctx.org_id,
    )
    token = create_access_token(
        Identity(id=ctx.identity.id, email=ctx.identity.email, metadata=metadata)
    )
    return TokenResponse(access_token=token, activeRole=data.role, roles=ctx.roles)
