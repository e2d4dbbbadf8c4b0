from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from docchat.config import utc_now
from docchat.core.chat_turn import ChatTurnPipeline
from docchat.core.errors import InferenceError, InvalidInputError, NotFoundError
from docchat.core.prompts import FALLBACK_ASSISTANT_MESSAGE
from docchat.db.models import Conversation, Message, Workspace
from docchat.db.repositories import ConversationRepository, DocumentRepository, MessageRepository


@pytest.fixture
def conversation(db_session: Session, workspace: Workspace) -> Conversation:
    return ConversationRepository(db_session).create(
        owner_id=workspace.owner_id,
        workspace_id=workspace.id,
        title="Quarterly review",
    )


@pytest.fixture
def pipeline(db_session: Session, llm) -> ChatTurnPipeline:
    return ChatTurnPipeline(db_session, llm=llm)


def _add_document(db: Session, workspace: Workspace, name: str, content: str, created_at: datetime) -> None:
    document = DocumentRepository(db).create(
        document_id=f"doc-{name}",
        owner_id=workspace.owner_id,
        workspace_id=workspace.id,
        name=name,
        content=content,
    )
    document.created_at = created_at
    db.commit()


def _stored_messages(db: Session, conversation_id: str) -> list[Message]:
    return MessageRepository(db).list_for_conversation(conversation_id)


def test_turn_persists_user_then_assistant(
    pipeline, db_session: Session, conversation: Conversation, llm
) -> None:
    before = conversation.updated_at

    result = pipeline.send_turn(user_id=conversation.owner_id, conversation_id=conversation.id, user_text="What grew?")

    assert result.user_message.role == "user"
    assert result.user_message.content == "What grew?"
    assert result.assistant_message.role == "assistant"
    assert result.assistant_message.content == "Grounded answer"
    assert result.user_message.id != result.assistant_message.id
    assert result.user_message.created_at <= result.assistant_message.created_at
    assert [m.role for m in _stored_messages(db_session, conversation.id)] == ["user", "assistant"]
    assert conversation.updated_at > before

    prompt = llm.calls[0]
    assert prompt[0]["role"] == "system"
    assert prompt[1:] == [{"role": "user", "content": "What grew?"}]


def test_history_window_keeps_last_ten_prior_messages(
    pipeline, db_session: Session, conversation: Conversation, llm
) -> None:
    messages = MessageRepository(db_session)
    start = utc_now() - timedelta(hours=1)
    for index in range(15):
        messages.create(
            conversation_id=conversation.id,
            role="user" if index % 2 == 0 else "assistant",
            content=f"turn {index}",
            created_at=start + timedelta(seconds=index),
        )

    pipeline.send_turn(user_id=conversation.owner_id, conversation_id=conversation.id, user_text="latest question")

    prompt = llm.calls[0]
    assert len(prompt) == 1 + 10 + 1
    assert [entry["content"] for entry in prompt[1:11]] == [f"turn {index}" for index in range(5, 15)]
    assert prompt[-1] == {"role": "user", "content": "latest question"}
    assert sum(1 for entry in prompt if entry["content"] == "latest question") == 1


def test_documents_are_embedded_newest_first(
    pipeline, db_session: Session, workspace: Workspace, conversation: Conversation, llm
) -> None:
    base = datetime(2026, 3, 1, tzinfo=UTC)
    _add_document(db_session, workspace, "old.txt", "old facts", base)
    _add_document(db_session, workspace, "new.txt", "new facts", base + timedelta(hours=1))

    pipeline.send_turn(user_id=conversation.owner_id, conversation_id=conversation.id, user_text="Summarize")

    system_prompt = llm.calls[0][0]["content"]
    assert "Document: new.txt\nnew facts\n\n---\n\nDocument: old.txt\nold facts" in system_prompt
    assert "If the answer cannot be found in the documents, say so." in system_prompt


def test_zero_documents_still_invokes_model(pipeline, conversation: Conversation, llm) -> None:
    pipeline.send_turn(user_id=conversation.owner_id, conversation_id=conversation.id, user_text="Anything?")

    assert len(llm.calls) == 1
    assert llm.calls[0][0]["content"].endswith("Documents:\n")


def test_document_context_is_truncated_at_limit(
    db_session: Session, workspace: Workspace, conversation: Conversation, llm
) -> None:
    base = datetime(2026, 3, 1, tzinfo=UTC)
    _add_document(db_session, workspace, "second.txt", "y" * 500, base)
    _add_document(db_session, workspace, "first.txt", "x" * 500, base + timedelta(minutes=1))
    pipeline = ChatTurnPipeline(db_session, llm=llm, max_context_chars=200)

    pipeline.send_turn(user_id=conversation.owner_id, conversation_id=conversation.id, user_text="Go")

    documents_section = llm.calls[0][0]["content"].split("Documents:\n", 1)[1]
    assert len(documents_section) <= 200
    assert documents_section.startswith("Document: first.txt")
    assert documents_section.endswith("[truncated]")
    assert "second.txt" not in documents_section


def test_inference_failure_keeps_user_message(
    pipeline, db_session: Session, conversation: Conversation, llm
) -> None:
    llm.error = TimeoutError("upstream timed out")

    with pytest.raises(InferenceError, match="upstream timed out"):
        pipeline.send_turn(user_id=conversation.owner_id, conversation_id=conversation.id, user_text="Hello?")

    stored = _stored_messages(db_session, conversation.id)
    assert [(m.role, m.content) for m in stored] == [("user", "Hello?")]


@pytest.mark.parametrize("reply", [None, ["structured", "parts"], 42])
def test_non_string_reply_becomes_apology(
    pipeline, conversation: Conversation, llm, reply: object
) -> None:
    llm.reply = reply

    result = pipeline.send_turn(user_id=conversation.owner_id, conversation_id=conversation.id, user_text="Hi")

    assert result.assistant_message.content == FALLBACK_ASSISTANT_MESSAGE


def test_missing_choices_becomes_apology(db_session: Session, conversation: Conversation) -> None:
    class EmptyLLM:
        def invoke(self, messages):
            return {"choices": []}

    pipeline = ChatTurnPipeline(db_session, llm=EmptyLLM())

    result = pipeline.send_turn(user_id=conversation.owner_id, conversation_id=conversation.id, user_text="Hi")

    assert result.assistant_message.content == FALLBACK_ASSISTANT_MESSAGE


def test_foreign_conversation_is_not_found(
    pipeline, db_session: Session, conversation: Conversation, llm
) -> None:
    with pytest.raises(NotFoundError):
        pipeline.send_turn(user_id="user-other", conversation_id=conversation.id, user_text="Let me in")

    assert llm.calls == []
    assert db_session.execute(select(Message)).scalars().all() == []


def test_blank_text_is_rejected(pipeline, conversation: Conversation, llm) -> None:
    with pytest.raises(InvalidInputError):
        pipeline.send_turn(user_id=conversation.owner_id, conversation_id=conversation.id, user_text="   ")

    assert llm.calls == []
