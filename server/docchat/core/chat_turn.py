from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from docchat.config import settings
from docchat.core.errors import InferenceError, InvalidInputError
from docchat.core.llm import ChatCompletionClient, completion_text
from docchat.core.ownership import OwnershipGuard
from docchat.core.prompts import FALLBACK_ASSISTANT_MESSAGE, build_document_context, grounded_system_prompt
from docchat.db.models import Message
from docchat.db.repositories import ConversationRepository, DocumentRepository, MessageRepository

logger = logging.getLogger(__name__)


@dataclass
class TurnResult:
    user_message: Message
    assistant_message: Message


class ChatTurnPipeline:
    def __init__(
        self,
        db: Session,
        *,
        llm: ChatCompletionClient,
        history_window: int | None = None,
        max_context_chars: int | None = None,
    ) -> None:
        self.guard = OwnershipGuard(db)
        self.conversations = ConversationRepository(db)
        self.documents = DocumentRepository(db)
        self.messages = MessageRepository(db)
        self.llm = llm
        self.history_window = settings.CHAT_HISTORY_WINDOW if history_window is None else history_window
        self.max_context_chars = max_context_chars or settings.MAX_CONTEXT_CHARS

    def build_prompt(
        self,
        workspace_id: str,
        conversation_id: str,
        user_text: str,
        exclude_id: str,
    ) -> list[dict[str, str]]:
        context = build_document_context(self.documents.list_for_workspace(workspace_id), self.max_context_chars)

        prior = [m for m in self.messages.list_for_conversation(conversation_id) if m.id != exclude_id]
        window = prior[-self.history_window :] if self.history_window > 0 else []
        history = [{"role": m.role, "content": m.content} for m in window]

        return [
            {"role": "system", "content": grounded_system_prompt(context)},
            *history,
            {"role": "user", "content": user_text},
        ]

    def send_turn(self, *, user_id: str, conversation_id: str, user_text: str) -> TurnResult:
        if not user_text or not user_text.strip():
            raise InvalidInputError("content is required")

        conversation = self.guard.conversation(conversation_id, user_id)

        # Durable before inference so a failed call still leaves the user's turn on record.
        user_message = self.messages.create(conversation_id=conversation.id, role="user", content=user_text)

        prompt = self.build_prompt(conversation.workspace_id, conversation.id, user_text, exclude_id=user_message.id)
        try:
            response = self.llm.invoke(prompt)
        except Exception as exc:  # noqa: BLE001
            logger.exception(
                "inference call failed",
                extra={"conversation_id": conversation.id, "user_message_id": user_message.id},
            )
            raise InferenceError(f"Inference failed: {exc}") from exc

        content = completion_text(response)
        if content is None:
            logger.warning("inference returned no text content", extra={"conversation_id": conversation.id})
            content = FALLBACK_ASSISTANT_MESSAGE

        assistant_message = self.messages.create(conversation_id=conversation.id, role="assistant", content=content)
        self.conversations.touch(conversation)

        return TurnResult(user_message=user_message, assistant_message=assistant_message)
