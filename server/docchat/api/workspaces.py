from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from docchat.api.deps import get_current_user, get_guard
from docchat.core.auth import AuthenticatedUser
from docchat.core.errors import InvalidInputError
from docchat.core.ownership import OwnershipGuard
from docchat.db.repositories import WorkspaceRepository
from docchat.db.session import get_db
from docchat.schemas.workspace import (
    DeletedResponse,
    WorkspaceCreateRequest,
    WorkspaceListResponse,
    WorkspaceResponse,
    WorkspaceUpdateRequest,
)

router = APIRouter()


@router.get("", response_model=WorkspaceListResponse)
def list_workspaces(
    user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> WorkspaceListResponse:
    workspaces = WorkspaceRepository(db).list_for_owner(user.user_id)
    return WorkspaceListResponse(items=[WorkspaceResponse.model_validate(w) for w in workspaces])


@router.post("", response_model=WorkspaceResponse, status_code=status.HTTP_201_CREATED)
def create_workspace(
    payload: WorkspaceCreateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> WorkspaceResponse:
    name = payload.name.strip()
    if not name:
        raise InvalidInputError("name is required")
    workspace = WorkspaceRepository(db).create(
        owner_id=user.user_id,
        name=name,
        description=payload.description,
    )
    return WorkspaceResponse.model_validate(workspace)


@router.patch("/{workspace_id}", response_model=WorkspaceResponse)
def update_workspace(
    workspace_id: str,
    payload: WorkspaceUpdateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    guard: OwnershipGuard = Depends(get_guard),
    db: Session = Depends(get_db),
) -> WorkspaceResponse:
    workspace = guard.workspace(workspace_id, user.user_id)
    name = payload.name.strip() if payload.name is not None else None
    if name == "":
        raise InvalidInputError("name must not be blank")
    updated = WorkspaceRepository(db).update(workspace, name=name, description=payload.description)
    return WorkspaceResponse.model_validate(updated)


@router.delete("/{workspace_id}", response_model=DeletedResponse)
def delete_workspace(
    workspace_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    guard: OwnershipGuard = Depends(get_guard),
    db: Session = Depends(get_db),
) -> DeletedResponse:
    workspace = guard.workspace(workspace_id, user.user_id)
    WorkspaceRepository(db).delete_cascade(workspace.id)
    return DeletedResponse()
