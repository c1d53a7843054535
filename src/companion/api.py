"""FastAPI request surface: chat turns, history, conversation list and voice input.

Each request opens its own store connection and orchestrator; nothing
mutable is shared between requests except what lives in the database.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from fastapi import APIRouter, Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field

from . import __version__
from .audio import extract_audio_features
from .config import POLICY_PATH, REFERENCE_TIMEZONE, SESSION_COOKIE, SQLITE_PATH
from .errors import CompanionError, InvalidRequest
from .identity import verify_caller
from .llm import ModelClient
from .models import AudioFeatures, Conversation, Message
from .policy import Policy, load_policy
from .resolver import ConversationResolver
from .storage import ConversationStore
from .transcription import Transcriber
from .turns import CompletionModel, TurnOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")
security = HTTPBearer(auto_error=False)


class TurnRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    conversation_id: str | None = Field(default=None, alias="conversationId")
    audio_features: AudioFeatures | None = Field(default=None, alias="audioFeatures")


class DeleteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str | None = Field(default=None, alias="conversationId")


def get_store(request: Request):
    store = ConversationStore(request.app.state.db_path, create_schema=False)
    try:
        yield store
    finally:
        store.close()


def get_owner(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    store: ConversationStore = Depends(get_store),
) -> str:
    """Verified owner id from the bearer token, or the session cookie."""
    token = credentials.credentials if credentials else request.cookies.get(SESSION_COOKIE)
    return verify_caller(store, token)


def get_orchestrator(
    request: Request, store: ConversationStore = Depends(get_store)
) -> TurnOrchestrator:
    state = request.app.state
    resolver = ConversationResolver(store, state.timezone, clock=state.clock)
    return TurnOrchestrator(store, state.model, state.policy, resolver=resolver)


def _message_json(message: Message) -> dict:
    return message.model_dump(mode="json")


def _conversation_json(conversation: Conversation) -> dict:
    return conversation.model_dump(mode="json", exclude={"owner_id"})


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/chat")
def get_chat(
    conversation_id: str | None = Query(None, alias="conversationId"),
    owner_id: str = Depends(get_owner),
    turns: TurnOrchestrator = Depends(get_orchestrator),
):
    """Transcript of a conversation; today's (created if needed) by default."""
    conversation, messages = turns.history(owner_id, conversation_id)
    return {
        "conversationId": conversation.id,
        "messages": [_message_json(m) for m in messages],
    }


@router.post("/chat")
def post_chat(
    request: Request,
    body: TurnRequest,
    owner_id: str = Depends(get_owner),
    turns: TurnOrchestrator = Depends(get_orchestrator),
):
    result = turns.handle(
        owner_id,
        body.message,
        conversation_id=body.conversation_id,
        audio_features=body.audio_features,
    )
    if result.crisis:
        policy: Policy = request.app.state.policy
        return {
            "crisis": True,
            "keywords": result.keywords,
            "message": policy.crisis_message,
            "resources": [r.model_dump() for r in policy.crisis_resources],
        }
    return {
        "message": _message_json(result.assistant_message),
        "crisis": False,
        "conversationId": result.conversation_id,
    }


@router.get("/conversations")
def get_conversations(
    owner_id: str = Depends(get_owner),
    turns: TurnOrchestrator = Depends(get_orchestrator),
):
    return {"conversations": [_conversation_json(c) for c in turns.conversations(owner_id)]}


@router.delete("/conversations")
def delete_conversation(
    body: DeleteRequest,
    owner_id: str = Depends(get_owner),
    turns: TurnOrchestrator = Depends(get_orchestrator),
):
    turns.delete(owner_id, body.conversation_id)
    return {"success": True}


@router.post("/transcribe", dependencies=[Depends(get_owner)])
def transcribe(
    request: Request,
    audio: UploadFile | None = File(None),
    duration_seconds: float | None = Form(None, alias="durationSeconds"),
    average_volume: float | None = Form(None, alias="averageVolume"),
):
    """Transcribe a voice message and, given timing and volume, derive its features."""
    if audio is None:
        raise InvalidRequest("Audio file is required")
    transcriber: Transcriber = request.app.state.transcriber
    text = transcriber.transcribe(audio.file.read(), audio.filename or "audio.webm")

    response: dict = {"text": text}
    if duration_seconds is not None and average_volume is not None:
        features = extract_audio_features(text, duration_seconds, average_volume)
        response["audioFeatures"] = features.model_dump(by_alias=True)
    return response


def _companion_error(request: Request, exc: CompanionError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "%s %s raised an unexpected error", request.method, request.url.path, exc_info=exc
    )
    return JSONResponse({"error": CompanionError.default_message}, status_code=500)


def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}"
        for err in exc.errors()
    )
    return _companion_error(request, InvalidRequest(f"Invalid request: {details}"))


def create_app(
    db_path: Path | None = None,
    model: CompletionModel | None = None,
    transcriber: Transcriber | None = None,
    policy: Policy | None = None,
    timezone: str = REFERENCE_TIMEZONE,
    clock: Callable[[], datetime] | None = None,
    provision_schema: bool = True,
) -> FastAPI:
    """Build the HTTP app. Collaborators default to the configured services."""
    policy = policy or load_policy(POLICY_PATH)

    app = FastAPI(title="companion", version=__version__)
    app.state.db_path = db_path or SQLITE_PATH
    app.state.policy = policy
    app.state.model = model or ModelClient(fallback_reply=policy.fallback_reply)
    app.state.transcriber = transcriber or Transcriber()
    app.state.timezone = timezone
    app.state.clock = clock

    if provision_schema:
        ConversationStore(app.state.db_path).close()

    app.include_router(router)
    app.add_exception_handler(CompanionError, _companion_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(Exception, _unexpected_error)
    return app
