from pydantic import BaseModel

class ToolToggleRequest(BaseModel):
    tool: str
    connected: bool

class ConnectRequest(BaseModel):
    service: str
