from pydantic import BaseModel
from typing import Optional

class ChatMessageInput(BaseModel):
    content: str
    chatId: Optional[str] = None
    agentId: Optional[str] = None
