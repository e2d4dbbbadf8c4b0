from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from docchat.api.deps import get_current_user
from docchat.config import settings
from docchat.core.auth import AuthenticatedUser
from docchat.db.repositories import WorkspaceRepository
from docchat.db.session import get_db
from docchat.schemas.workspace import MeResponse, WorkspaceResponse

router = APIRouter()


@router.get("/me", response_model=MeResponse)
def get_me(
    user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> MeResponse:
    workspaces = WorkspaceRepository(db).ensure_default(
        user.user_id,
        name=settings.DEFAULT_WORKSPACE_NAME,
        description=settings.DEFAULT_WORKSPACE_DESCRIPTION,
    )
    return MeResponse(
        user_id=user.user_id,
        email=user.email,
        workspaces=[WorkspaceResponse.model_validate(workspace) for workspace in workspaces],
    )
