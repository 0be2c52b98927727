from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field
from backoffice.models.base import MongoModel

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class ActionType(str, Enum):
    SYSTEM_EVENT = "SYSTEM_EVENT"
    USER_ACTION = "USER_ACTION"
    ERROR = "ERROR"
    STATE_CHANGE = "STATE_CHANGE"

class Actor(BaseModel):
    id: str
    name: str
    type: str = "SYSTEM" # SYSTEM, USER

class AuditEvent(MongoModel):
    """
    Structured record of a finance action (totals calculated, journal posted,
    payment recorded, ...).
    """
    key_field: ClassVar[str] = "event_id"

    event_id: str = Field(..., description="Unique event ID")
    module: str = Field("finance", description="billing, rma, payments, quoting, rbac")
    action: str
    action_type: ActionType = ActionType.SYSTEM_EVENT
    actor: Actor
    timestamp: datetime = Field(default_factory=utcnow)
    details: Dict[str, Any] = Field(default_factory=dict)
    success: bool = True
    reference_id: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
            "example": {
                "event_id": "EVT-5f0c",
                "module": "finance",
                "action": "gl_posted",
                "actor": {"id": "system", "name": "system", "type": "SYSTEM"},
                "details": {"journal_id": "GL-20240115093000-ab12cd34ef56", "debits": 100.0, "credits": 100.0}
            }
        }
    )
