from __future__ import annotations

from sqlalchemy.orm import Session

from docchat.core.errors import NotFoundError
from docchat.db.models import Conversation, Document, Workspace


class OwnershipGuard:
    """Resolves resources for a caller, failing with NotFoundError when the caller is not the owner.

    Document and conversation checks also walk up to the owning workspace, so a
    record attached to someone else's workspace is rejected even if its own
    owner column matches.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def workspace(self, workspace_id: str, user_id: str) -> Workspace:
        workspace = self.db.get(Workspace, workspace_id) if workspace_id else None
        if workspace is None or workspace.owner_id != user_id:
            raise NotFoundError("Workspace")
        return workspace

    def document(self, document_id: str, user_id: str) -> Document:
        document = self.db.get(Document, document_id) if document_id else None
        if document is None or document.owner_id != user_id or not self._owns_workspace(document.workspace_id, user_id):
            raise NotFoundError("Document")
        return document

    def conversation(self, conversation_id: str, user_id: str) -> Conversation:
        conversation = self.db.get(Conversation, conversation_id) if conversation_id else None
        if (
            conversation is None
            or conversation.owner_id != user_id
            or not self._owns_workspace(conversation.workspace_id, user_id)
        ):
            raise NotFoundError("Conversation")
        return conversation

    def _owns_workspace(self, workspace_id: str, user_id: str) -> bool:
        workspace = self.db.get(Workspace, workspace_id)
        return workspace is not None and workspace.owner_id == user_id
