from .auth import EmailVerification, PasswordResetRequest, User
from .db import Base
from .fleet import Assignment, Axis, Personnel, Planning, Stop, TransportCheck, Trip, Vehicle
from .log import SecurityLog

__all__ = [
    "Assignment",
    "Axis",
    "Base",
    "EmailVerification",
    "PasswordResetRequest",
    "Personnel",
    "Planning",
    "SecurityLog",
    "Stop",
    "TransportCheck",
    "Trip",
    "User",
    "Vehicle",
]
