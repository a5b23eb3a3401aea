from minicompete.schemas.competition import CompetitionCreate, CompetitionResponse, CompetitionDetail
from minicompete.schemas.registration import CompetitionSummary, RegistrationResponse, RegistrationCancelResponse
from minicompete.schemas.notification import (
    RegistrationConfirmationJob, ReminderNotificationJob, NotificationJob, JobOptions, Backoff,
)
from minicompete.schemas.mailbox import MailBoxEntry, MailBoxResponse, FailedJobResponse

__all__ = [
    "CompetitionCreate", "CompetitionResponse", "CompetitionDetail",
    "CompetitionSummary", "RegistrationResponse", "RegistrationCancelResponse",
    "RegistrationConfirmationJob", "ReminderNotificationJob", "NotificationJob", "JobOptions", "Backoff",
    "MailBoxEntry", "MailBoxResponse", "FailedJobResponse",
]
