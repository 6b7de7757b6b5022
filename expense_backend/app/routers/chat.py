"""Router for the chat assistant."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from .. import schemas
from ..procedures import ProcedureGateway, get_gateway
from ..services import ChatService, get_chat_service

router = APIRouter()


@router.post("", response_model=schemas.ChatResponse)
def send_message(
    request: schemas.ChatRequest,
    chat: ChatService = Depends(get_chat_service),
    gateway: ProcedureGateway = Depends(get_gateway),
):
    if not request.message.strip():
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=schemas.ChatResponse(
                success=False, error="Message cannot be empty"
            ).model_dump(),
        )
    return chat.respond(request.message, request.history, gateway)


@router.get("/status", response_model=schemas.ChatStatusResponse)
def chat_status(chat: ChatService = Depends(get_chat_service)) -> schemas.ChatStatusResponse:
    return chat.status()
