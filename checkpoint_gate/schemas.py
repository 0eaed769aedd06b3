from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class CheckInReq(BaseModel):
    credential: str = Field(min_length=1)
    checkpoint: str = Field(min_length=1)


class CheckpointToggleReq(BaseModel):
    checkpoint: str = Field(min_length=1)
    action: Literal["lock", "unlock"]


class CreateEventReq(BaseModel):
    name: str = Field(min_length=1)
    checkpoints: Optional[List[str]] = None


class CreateRegistrationReq(BaseModel):
    participant_id: str = Field(min_length=1)
    status: Literal["pending", "approved"] = "approved"
