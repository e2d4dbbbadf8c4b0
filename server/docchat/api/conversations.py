from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from docchat.api.deps import get_chat_turn_pipeline, get_current_user, get_guard, limit_messages
from docchat.core.auth import AuthenticatedUser
from docchat.core.chat_turn import ChatTurnPipeline
from docchat.core.errors import InvalidInputError
from docchat.core.ownership import OwnershipGuard
from docchat.db.repositories import ConversationRepository, MessageRepository
from docchat.db.session import get_db
from docchat.schemas.chat import (
    ConversationCreateRequest,
    ConversationListResponse,
    ConversationResponse,
    MessageListResponse,
    MessageResponse,
    SendMessageRequest,
    SendMessageResponse,
)
from docchat.schemas.workspace import DeletedResponse

router = APIRouter()


@router.get("", response_model=ConversationListResponse)
def list_conversations(
    workspace_id: str = Query(min_length=1),
    user: AuthenticatedUser = Depends(get_current_user),
    guard: OwnershipGuard = Depends(get_guard),
    db: Session = Depends(get_db),
) -> ConversationListResponse:
    workspace = guard.workspace(workspace_id, user.user_id)
    conversations = ConversationRepository(db).list_for_workspace(workspace.id)
    return ConversationListResponse(items=[ConversationResponse.model_validate(c) for c in conversations])


@router.post("", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
def create_conversation(
    payload: ConversationCreateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    guard: OwnershipGuard = Depends(get_guard),
    db: Session = Depends(get_db),
) -> ConversationResponse:
    title = payload.title.strip()
    if not title:
        raise InvalidInputError("title is required")
    workspace = guard.workspace(payload.workspace_id, user.user_id)
    conversation = ConversationRepository(db).create(owner_id=user.user_id, workspace_id=workspace.id, title=title)
    return ConversationResponse.model_validate(conversation)


@router.get("/{conversation_id}", response_model=ConversationResponse)
def get_conversation(
    conversation_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    guard: OwnershipGuard = Depends(get_guard),
) -> ConversationResponse:
    return ConversationResponse.model_validate(guard.conversation(conversation_id, user.user_id))


@router.delete("/{conversation_id}", response_model=DeletedResponse)
def delete_conversation(
    conversation_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    guard: OwnershipGuard = Depends(get_guard),
    db: Session = Depends(get_db),
) -> DeletedResponse:
    conversation = guard.conversation(conversation_id, user.user_id)
    ConversationRepository(db).delete_cascade(conversation.id)
    return DeletedResponse()


@router.get("/{conversation_id}/messages", response_model=MessageListResponse)
def list_messages(
    conversation_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    guard: OwnershipGuard = Depends(get_guard),
    db: Session = Depends(get_db),
) -> MessageListResponse:
    conversation = guard.conversation(conversation_id, user.user_id)
    messages = MessageRepository(db).list_for_conversation(conversation.id)
    return MessageListResponse(items=[MessageResponse.model_validate(m) for m in messages])


@router.post(
    "/{conversation_id}/messages",
    response_model=SendMessageResponse,
    dependencies=[Depends(limit_messages)],
)
def send_message(
    conversation_id: str,
    payload: SendMessageRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    pipeline: ChatTurnPipeline = Depends(get_chat_turn_pipeline),
) -> SendMessageResponse:
    result = pipeline.send_turn(user_id=user.user_id, conversation_id=conversation_id, user_text=payload.content)
    return SendMessageResponse(
        user_message=MessageResponse.model_validate(result.user_message),
        assistant_message=MessageResponse.model_validate(result.assistant_message),
    )
