from pydantic import BaseModel, Field
from typing import List, Optional

class CreateAgentRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    context: Optional[str] = None
    instructions: Optional[str] = None
    connectedApps: List[str] = Field(default_factory=list)

class UpdateAgentRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    context: Optional[str] = None
    instructions: Optional[str] = None
    connectedApps: Optional[List[str]] = None
