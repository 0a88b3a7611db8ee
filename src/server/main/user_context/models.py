from pydantic import BaseModel, Field
from typing import Any, Dict

class ScanRequest(BaseModel):
    forceScan: bool = False

class UpdateContextRequest(BaseModel):
    preferences: Dict[str, Any] = Field(default_factory=dict)
    facts: Dict[str, Any] = Field(default_factory=dict)
