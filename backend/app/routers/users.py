"""
Router pour la lecture de l'organisation persistée d'un utilisateur.
Sert aux clients dont le jeton ne porte pas encore d'org_id.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.auth_errors import ForbiddenError
from app.database import get_db
from app.guard import AuthContext, require_auth
from app.models.user import User
from app.schemas.auth import UserOrgIdResponse

router = APIRouter(prefix="/api/v1/users", tags=["Utilisateurs"])


@router.get("/{user_id}/org-id", response_model=UserOrgIdResponse, summary="Organisation d'un utilisateur")
def get_user_org_id(
    user_id: uuid.UUID,
    ctx: AuthContext = Depends(require_auth(require_org=False)),
    db: Session = Depends(get_db),
):
    """Réservé à l'utilisateur lui-même ou à un admin."""
    if ctx.active_role != "admin" and ctx.user_uuid != user_id:
        raise ForbiddenError("Lecture réservée à l'utilisateur lui-même.")

    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="Utilisateur introuvable.")
    return {"org_id": user.org_id}
