from app.models.user import User
from app.models.job import Job
from app.models.transaction import Transaction
from app.models.api_key import ApiKey
from app.models.failed_job import FailedJob

__all__ = [
    "User",
    "Job",
    "Transaction",
    "ApiKey",
    "FailedJob",
]
