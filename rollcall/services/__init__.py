from .attendance import AttendanceHistory
from .challenge import VerificationChallenge
from .container import Services, build_services
from .deadline import Countdown, format_remaining, is_due, remaining_ms
from .focus import FocusRegistry, FocusSession
from .participant import ParticipantFeed, ParticipantTracker
from .reconciliation import ReconciliationEngine
from .session import SessionConsole, SessionManager

__all__ = [
    # sessions
    "SessionManager",
    "SessionConsole",
    # participants
    "ParticipantTracker",
    "ParticipantFeed",
    # verification
    "VerificationChallenge",
    "FocusRegistry",
    "FocusSession",
    # deadlines
    "Countdown",
    "format_remaining",
    "is_due",
    "remaining_ms",
    # reconciliation and history
    "ReconciliationEngine",
    "AttendanceHistory",
    # wiring
    "Services",
    "build_services",
]
