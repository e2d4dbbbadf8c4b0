from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from docchat.config import utc_now
from docchat.db.models import Conversation, Document, Message, Workspace, new_id

MESSAGE_ROLES = frozenset({"user", "assistant"})


class WorkspaceRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, workspace_id: str) -> Workspace | None:
        return self.db.get(Workspace, workspace_id)

    def list_for_owner(self, owner_id: str) -> list[Workspace]:
        stmt = select(Workspace).where(Workspace.owner_id == owner_id).order_by(Workspace.updated_at.desc())
        return list(self.db.execute(stmt).scalars().all())

    def create(
        self, *, owner_id: str, name: str, description: str | None = None, is_default: bool = False
    ) -> Workspace:
        workspace = Workspace(
            id=new_id(), owner_id=owner_id, name=name, description=description, is_default=is_default
        )
        self.db.add(workspace)
        self.db.commit()
        return workspace

    def update(self, workspace: Workspace, *, name: str | None = None, description: str | None = None) -> Workspace:
        if name is not None:
            workspace.name = name
        if description is not None:
            workspace.description = description
        workspace.updated_at = utc_now()
        self.db.commit()
        return workspace

    def delete_cascade(self, workspace_id: str) -> None:
        # Children first: messages -> conversations -> documents -> workspace.
        conversation_ids = select(Conversation.id).where(Conversation.workspace_id == workspace_id)
        self.db.execute(delete(Message).where(Message.conversation_id.in_(conversation_ids)))
        self.db.execute(delete(Conversation).where(Conversation.workspace_id == workspace_id))
        self.db.execute(delete(Document).where(Document.workspace_id == workspace_id))
        self.db.execute(delete(Workspace).where(Workspace.id == workspace_id))
        self.db.commit()

    def ensure_default(self, owner_id: str, *, name: str, description: str | None) -> list[Workspace]:
        workspaces = self.list_for_owner(owner_id)
        if workspaces:
            return workspaces
        try:
            self.create(owner_id=owner_id, name=name, description=description, is_default=True)
        except IntegrityError:
            # A concurrent request created the default first; use theirs.
            self.db.rollback()
        return self.list_for_owner(owner_id)


class DocumentRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, document_id: str) -> Document | None:
        return self.db.get(Document, document_id)

    def list_for_workspace(self, workspace_id: str) -> list[Document]:
        stmt = (
            select(Document)
            .where(Document.workspace_id == workspace_id)
            .order_by(Document.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def create(
        self,
        *,
        document_id: str,
        owner_id: str,
        workspace_id: str,
        name: str,
        content: str,
        file_url: str | None = None,
        mime_type: str | None = None,
        file_size: int | None = None,
    ) -> Document:
        document = Document(
            id=document_id,
            owner_id=owner_id,
            workspace_id=workspace_id,
            name=name,
            content=content or "",
            file_url=file_url,
            mime_type=mime_type,
            file_size=file_size,
        )
        self.db.add(document)
        self.db.commit()
        return document

    def delete(self, document_id: str) -> None:
        self.db.execute(delete(Document).where(Document.id == document_id))
        self.db.commit()


class ConversationRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, conversation_id: str) -> Conversation | None:
        return self.db.get(Conversation, conversation_id)

    def list_for_workspace(self, workspace_id: str) -> list[Conversation]:
        stmt = (
            select(Conversation)
            .where(Conversation.workspace_id == workspace_id)
            .order_by(Conversation.updated_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def create(self, *, owner_id: str, workspace_id: str, title: str) -> Conversation:
        conversation = Conversation(id=new_id(), owner_id=owner_id, workspace_id=workspace_id, title=title)
        self.db.add(conversation)
        self.db.commit()
        return conversation

    def touch(self, conversation: Conversation) -> Conversation:
        conversation.updated_at = utc_now()
        self.db.commit()
        return conversation

    def delete_cascade(self, conversation_id: str) -> None:
        self.db.execute(delete(Message).where(Message.conversation_id == conversation_id))
        self.db.execute(delete(Conversation).where(Conversation.id == conversation_id))
        self.db.commit()


class MessageRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def list_for_conversation(self, conversation_id: str) -> list[Message]:
        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def create(
        self,
        *,
        conversation_id: str,
        role: str,
        content: str,
        created_at: datetime | None = None,
    ) -> Message:
        if role not in MESSAGE_ROLES:
            raise ValueError(f"Unsupported message role: {role}")
        message = Message(
            id=new_id(),
            conversation_id=conversation_id,
            role=role,
            content=content,
            created_at=created_at or utc_now(),
        )
        self.db.add(message)
        self.db.commit()
        return message
