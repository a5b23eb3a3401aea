"""
Notification job payloads.

Each job name has its own payload model; `NotificationJob` is a union tagged by
`kind`, so the worker can validate what it dequeues against the job name it was
enqueued under. An unknown or malformed payload fails at enqueue time in the
producer, and again at dequeue time if the stored data has drifted.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

REGISTRATION_CONFIRMATION = "registration-confirmation"
REMINDER_NOTIFICATION = "reminder-notification"


class RegistrationConfirmationJob(BaseModel):
    kind: Literal["registration-confirmation"] = REGISTRATION_CONFIRMATION
    registration_id: int
    user_id: int
    competition_id: int
    user_email: str
    user_name: str
    competition_title: str


class ReminderNotificationJob(BaseModel):
    kind: Literal["reminder-notification"] = REMINDER_NOTIFICATION
    user_id: int
    competition_id: int
    user_email: str
    user_name: str
    competition_title: str
    competition_start_date: str  # ISO-8601, or "TBD"


NotificationJob = Annotated[
    Union[RegistrationConfirmationJob, ReminderNotificationJob],
    Field(discriminator="kind"),
]

notification_job_adapter: TypeAdapter[NotificationJob] = TypeAdapter(NotificationJob)


class Backoff(BaseModel):
    type: Literal["exponential", "fixed"] = "exponential"
    delay_ms: int = Field(2000, ge=0)

    def delay_for(self, attempts_made: int) -> int:
        """Delay before the next attempt, after `attempts_made` failures."""
        if self.type == "fixed":
            return self.delay_ms
        return self.delay_ms * 2 ** (attempts_made - 1)


class JobOptions(BaseModel):
    attempts: int = Field(3, ge=1)
    backoff: Backoff = Field(default_factory=Backoff)
    remove_on_complete: bool = True
