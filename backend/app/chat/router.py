"""Chat router providing WebSocket and HTTP endpoints.

This module provides:
    - GET /chat/contacts: Users the caller may chat with, with unread counts
    - GET /chat/history: Transcript with one user (marks their messages read)
    - POST /chat/upload: Upload an image, returns its URL for a message
    - WebSocket /ws/chat?token=...: Real-time direct messaging

The WebSocket protocol:
    1. Client connects with its access token as the ``token`` query
       parameter (browsers cannot set headers on the upgrade request).
       Missing or invalid tokens are refused before the upgrade (HTTP 401).
    2. Client sends {"receiver_id", "content", "image_url"} text frames.
       Frames that are malformed, addressed to an unknown user or blocked
       by the role policy are dropped silently.
    3. Server pushes {"id", "sender_id", "receiver_id", "content",
       "image_url", "is_read", "created_at"} frames for messages addressed
       to the client. Senders get no echo.
    4. Messages to offline users are only stored; fetch them via history.
"""
import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile, WebSocket, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from app.auth.dependencies import get_current_user
from app.auth.service import AuthService, TokenClaims
from app.errors import AppError, to_http_exception
from app.files.service import ImageStorageService, extension_from_filename

from .schemas import Contact, ImageUploadResponse, MessageView
from .service import ChatQueryService
from .session import ChatSession

logger = logging.getLogger(__name__)

router = APIRouter()


def get_chat_queries(request: Request) -> ChatQueryService:
    return request.app.state.chat_queries


def get_image_storage(request: Request) -> ImageStorageService:
    return request.app.state.image_storage


@router.get("/chat/contacts", response_model=List[Contact])
async def get_contacts(
    current: TokenClaims = Depends(get_current_user),
    queries: ChatQueryService = Depends(get_chat_queries),
) -> List[Contact]:
    """List the users the caller may chat with.

    Returns:
        Array of {id, name, role, unread_count}, sorted by name.
    """
    logger.info("get_contacts called for user_id=%s, role=%s", current.user_id, current.role.value)
    try:
        return queries.list_contacts(current.user_id, current.role)
    except AppError as e:
        raise to_http_exception(e)


@router.get("/chat/history", response_model=List[MessageView])
async def get_chat_history(
    other_user_id: uuid.UUID = Query(..., description="User whose conversation to fetch"),
    current: TokenClaims = Depends(get_current_user),
    queries: ChatQueryService = Depends(get_chat_queries),
) -> List[MessageView]:
    """Get the full conversation with another user, oldest first.

    Side effect: every message from ``other_user_id`` to the caller is
    marked read, and the returned flags reflect that.

    Raises:
        HTTPException 404: Unknown user.
        HTTPException 422: Malformed user id.
        HTTPException 403: The two roles may not chat.
    """
    logger.info("get_chat_history called: user_id=%s, other_user_id=%s", current.user_id, other_user_id)
    try:
        messages = queries.get_history(current.user_id, current.role, str(other_user_id))
    except AppError as e:
        raise to_http_exception(e)
    return [MessageView.from_message(m) for m in messages]


@router.post("/chat/upload", response_model=ImageUploadResponse)
async def upload_image(
    request: Request,
    file: UploadFile = File(...),
    current: TokenClaims = Depends(get_current_user),
    storage: ImageStorageService = Depends(get_image_storage),
) -> ImageUploadResponse:
    """Upload a chat image and return its public URL.

    Raises:
        HTTPException 413: If the image exceeds ``chat.max_image_bytes``.
        HTTPException 500: If the object store rejects the upload.
    """
    content = await file.read()
    max_bytes = request.app.state.config.chat.max_image_bytes
    if len(content) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail={"code": "VALIDATION_ERROR", "message": f"Image exceeds {max_bytes} bytes"},
        )

    ext = extension_from_filename(file.filename)
    logger.info("Uploading %d byte image (.%s) for user %s", len(content), ext, current.user_id)
    try:
        url = await run_in_threadpool(storage.upload_image, content, ext, current.user_id)
    except AppError as e:
        raise to_http_exception(e)
    return ImageUploadResponse(url=url)


async def _reject(websocket: WebSocket, message: str) -> None:
    """Refuse the upgrade with HTTP 401, or close with 1008 if the server
    lacks the denial-response extension."""
    if "websocket.http.response" in websocket.scope.get("extensions", {}):
        await websocket.send_denial_response(
            JSONResponse({"code": "UNAUTHORIZED", "message": message}, status_code=401)
        )
    else:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=message)


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="Access token"),
) -> None:
    """WebSocket endpoint for real-time direct messages.

    Args:
        websocket: The WebSocket connection.
        token: Access token (query parameter).
    """
    logger.info("[WS] Chat connection attempt")
    state = websocket.app.state

    if not token:
        logger.warning("[WS] Connection rejected: missing token")
        await _reject(websocket, "Missing token")
        return

    auth: AuthService = state.auth_service
    try:
        claims = auth.validate_token(token)
    except AppError as e:
        logger.warning(f"[WS] Connection rejected: {e.message}")
        await _reject(websocket, "Invalid token")
        return

    logger.info("[WS] Authenticated user_id=%s, role=%s", claims.user_id, claims.role.value)
    session = ChatSession(
        websocket,
        claims,
        registry=state.registry,
        users=state.users,
        store=state.message_store,
    )
    await session.run()
