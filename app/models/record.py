# app/models/record.py - Morale record schemas

from pydantic import BaseModel, Field

MIN_MORALE_VALUE = 1
MAX_MORALE_VALUE = 10


class RecordCreate(BaseModel):
    name: str = Field(min_length=1)
    # Range is checked by the orchestrator so the rejection shows in the operation status.
    morale_value: int
    description: str = ""


class Record(BaseModel):
    id: str
    name: str
    description: str = ""
    creator: str
    timestamp: int = 0
    public_value1: int = 0
    public_value2: int = 0
    encrypted_value_handle: str | None = None
    is_verified: bool = False
    decrypted_value: int = 0

    model_config = {"frozen": True}


class MoraleStats(BaseModel):
    total_entries: int
    avg_morale: float
    verified_count: int
    today_entries: int
    high_morale_count: int
    score_distribution: list[int]
