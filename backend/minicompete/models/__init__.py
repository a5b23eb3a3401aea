from minicompete.models.user import User
from minicompete.models.competition import Competition
from minicompete.models.registration import Registration
from minicompete.models.idempotency import IdempotencyKey
from minicompete.models.mailbox import MailBox
from minicompete.models.failed_job import FailedJob

__all__ = ["User", "Competition", "Registration", "IdempotencyKey", "MailBox", "FailedJob"]
