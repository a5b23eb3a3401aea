"""
Pydantic schemas for registration responses.

RegistrationResponse is also what gets stored under an Idempotency-Key, so its
JSON form must be stable: a replay returns the stored dict as-is.
"""

from datetime import datetime

from pydantic import BaseModel


class CompetitionSummary(BaseModel):
    id: int
    title: str


class RegistrationResponse(BaseModel):
    id: int
    competition_id: int
    user_id: int
    registered_at: datetime
    competition: CompetitionSummary


class RegistrationCancelResponse(BaseModel):
    message: str
    registration_id: int
    competition_id: int
