"""SQLAlchemy ORM models used by the API layer."""

from .booking import BookingModel
from .otp import OtpChallengeModel
from .rate_limit import RateLimitCounterModel
from .user import UserModel

__all__ = [
    "BookingModel",
    "OtpChallengeModel",
    "RateLimitCounterModel",
    "UserModel",
]
