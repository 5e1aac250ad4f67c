"""
api/chat.py

Handles the chat endpoint.

Endpoints:
  - POST /chat: Receives a chat message, lets the orchestrator classify it and either run the
                analysis workflow (markdown report) or answer through the chat model. Model
                failures are replaced by a fallback message, so a 200 response is returned
                whenever the input is valid. Clients may send the whole conversation as
                'messages'; the last user message is answered and the earlier turns are
                passed to the model as context.
"""

import logging
from typing import List, Optional, Tuple

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from config import CONFIG
from monitoring.metrics import track_errors
from shared.errors import InvalidInput
from shared.utils import create_error_response, truncate_message_for_logging

# Get a logger instance for this module
logger = logging.getLogger(__name__)

router = APIRouter()


class ChatMessage(BaseModel):
    role: str
    content: str = ""


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = None
    messages: Optional[List[ChatMessage]] = None
    session_id: Optional[str] = Field(None, alias="sessionId")
    user_id: Optional[str] = Field(None, alias="userId")


def split_conversation(payload: ChatRequest) -> Tuple[str, Optional[List[ChatMessage]]]:
    """
    Return the message to answer and the earlier turns, or None when the client sent no history.

    An explicit 'message' is answered with every entry of 'messages' as history; otherwise the
    last user entry of 'messages' is answered and the entries before it become the history.
    """
    if not payload.messages:
        return payload.message or "", None
    if payload.message:
        return payload.message, payload.messages
    for index in range(len(payload.messages) - 1, -1, -1):
        if payload.messages[index].role == "user":
            return payload.messages[index].content, payload.messages[:index]
    return "", None


@router.post("/chat")
@track_errors('http', 'chat_endpoint')
async def handle_chat(payload: ChatRequest, request: Request):
    """
    Process one chat message and return a standardized JSON response.

    Args:
        payload (ChatRequest): 'message' or a 'messages' conversation ({'role', 'content'}
            entries), plus optional 'sessionId' and 'userId'. A missing session id falls back to
            the configured default session.
        request (Request): Used to reach the orchestrator on app state.

    Returns:
        JSONResponse: {'message', 'type', 'sessionId', 'isAnalysis'} and, for analysis requests,
            the full 'report'. HTTP 400 with {'error'} when the message is empty.
    """
    session_id = payload.session_id or CONFIG.get('chat', {}).get('default_session_id', 'default-session')
    message, history = split_conversation(payload)
    logger.info(
        f"[handle_chat] Received message for session {session_id}: "
        f"'{truncate_message_for_logging(message, 80)}'"
    )

    orchestrator = request.app.state.orchestrator
    try:
        reply = await orchestrator.handle_message(
            message,
            session_id=session_id,
            user_id=payload.user_id,
            history=history,
        )
    except InvalidInput as e:
        logger.warning(f"[handle_chat] Rejected message for session {session_id}: {e}")
        return JSONResponse(create_error_response(str(e), "invalid_input"), status_code=400)

    return JSONResponse(reply.to_api_response())
