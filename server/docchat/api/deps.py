from functools import lru_cache

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from docchat.core.auth import AuthenticatedUser, authenticate_bearer
from docchat.core.chat_turn import ChatTurnPipeline
from docchat.core.errors import AuthenticationError
from docchat.core.extraction import TextExtractor, build_text_extractor
from docchat.core.ingestion import IngestionPipeline
from docchat.core.llm import ChatCompletionClient, OpenAIChatClient
from docchat.core.ownership import OwnershipGuard
from docchat.core.rate_limit import message_rate_limit, upload_rate_limit
from docchat.core.storage import BlobStore, SupabaseBlobStore
from docchat.db.session import get_db

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AuthenticatedUser:
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise AuthenticationError("Missing or invalid Authorization header")
    return authenticate_bearer(credentials.credentials)


def get_guard(db: Session = Depends(get_db)) -> OwnershipGuard:
    return OwnershipGuard(db)


def get_blob_store() -> BlobStore:
    return SupabaseBlobStore()


# One extractor per process so its concurrency slots are shared across requests.
@lru_cache(maxsize=1)
def get_text_extractor() -> TextExtractor:
    return build_text_extractor()


def get_llm_client() -> ChatCompletionClient:
    return OpenAIChatClient()


def get_ingestion_pipeline(
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    extractor: TextExtractor = Depends(get_text_extractor),
) -> IngestionPipeline:
    return IngestionPipeline(db, blob_store=blob_store, extractor=extractor)


def get_chat_turn_pipeline(
    db: Session = Depends(get_db),
    llm: ChatCompletionClient = Depends(get_llm_client),
) -> ChatTurnPipeline:
    return ChatTurnPipeline(db, llm=llm)


def limit_uploads(user: AuthenticatedUser = Depends(get_current_user)) -> None:
    upload_rate_limit.check(user.user_id)


def limit_messages(user: AuthenticatedUser = Depends(get_current_user)) -> None:
    message_rate_limit.check(user.user_id)
