from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse

from app.schemas.queue import ChatMessagesResponse
from app.services.chat_store import get_chat_store

router = APIRouter(prefix="/api/chats", tags=["chats"])


@router.get(
    "/{chat_id}/messages",
    response_model=ChatMessagesResponse,
    summary="Get the confirmed messages of a chat",
)
async def get_chat_messages(
    chat_id: str,
    user_id: str = Query(..., alias="userId", min_length=1),
):
    messages = get_chat_store().get_messages(chat_id, user_id)
    if messages is None:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"success": False, "error": "Chat not found"}
        )
    return ChatMessagesResponse(success=True, messages=messages)
