# app/models/operation_status.py - Operation lifecycle schemas

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class OperationState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class OperationStatus(BaseModel):
    state: OperationState = OperationState.IDLE
    message: str = ""
    updated_at: datetime | None = None

    @property
    def visible(self) -> bool:
        return self.state != OperationState.IDLE
