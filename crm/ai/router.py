from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from crm.auth.dependencies import get_current_user
from crm.auth.schemas import CurrentUser
from crm.ai.service import AIServiceError, ChatCompletionClient, get_chat_client

router = APIRouter(prefix="/ai", tags=["ai"])

class ChatRequest(BaseModel):
    message: str = Field(min_length=1)

class ChatReply(BaseModel):
    reply: str

@router.post("/chat", response_model=ChatReply)
def chat(
    body: ChatRequest,
    current_user: CurrentUser = Depends(get_current_user),
    client: ChatCompletionClient = Depends(get_chat_client),
):
    try:
        return ChatReply(reply=client.chat(body.message))
    except AIServiceError:
        raise HTTPException(status_code=500, detail="AI is busy, please try again later.")
