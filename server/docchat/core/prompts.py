import logging
from collections.abc import Sequence

from docchat.db.models import Document

logger = logging.getLogger(__name__)

DOCUMENT_SEPARATOR = "\n\n---\n\n"
TRUNCATION_MARKER = "\n[truncated]"
FALLBACK_ASSISTANT_MESSAGE = "I apologize, but I couldn't generate a response."


def document_block(document: Document) -> str:
    return f"Document: {document.name}\n{document.content}"


def build_document_context(documents: Sequence[Document], max_chars: int) -> str:
    blocks: list[str] = []
    used = 0
    for index, document in enumerate(documents):
        block = document_block(document)
        separator = len(DOCUMENT_SEPARATOR) if blocks else 0
        if used + separator + len(block) <= max_chars:
            blocks.append(block)
            used += separator + len(block)
            continue

        room = max_chars - used - separator - len(TRUNCATION_MARKER)
        if room > 0:
            blocks.append(block[:room].rstrip() + TRUNCATION_MARKER)
        logger.warning(
            "document context truncated",
            extra={
                "max_chars": max_chars,
                "documents_total": len(documents),
                "documents_included": len(blocks),
                "first_dropped_index": index,
            },
        )
        break
    return DOCUMENT_SEPARATOR.join(blocks)


def grounded_system_prompt(context: str) -> str:
    return (
        "You are a helpful assistant that answers questions based on the provided documents. "
        "Use the following documents as context to answer the user's questions. "
        "If the answer cannot be found in the documents, say so.\n\n"
        f"Documents:\n{context}"
    )
