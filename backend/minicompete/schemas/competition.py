"""
Pydantic schemas for competition-related request/response validation.
"""

from datetime import datetime
from typing import Optional

from pydantic import AwareDatetime, BaseModel, Field, model_validator


class CompetitionCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    tags: list[str] = Field(default_factory=list)
    capacity: int = Field(..., gt=0, le=100000)
    reg_deadline: AwareDatetime
    start_date: Optional[AwareDatetime] = None

    @model_validator(mode="after")
    def _starts_after_deadline(self) -> "CompetitionCreate":
        if self.start_date is not None and self.start_date < self.reg_deadline:
            raise ValueError("start_date must not be before reg_deadline")
        return self


class CompetitionResponse(BaseModel):
    id: int
    title: str
    description: str
    tags: list[str]
    capacity: int
    reg_deadline: datetime
    start_date: Optional[datetime]
    organizer_id: int
    created_at: datetime

    model_config = {"from_attributes": True}


class CompetitionDetail(CompetitionResponse):
    registered_count: int
    seats_left: int
