"""
Integrity Hooks

The engine does not sense cheating itself. It offers:
1. IntegrityMonitor strategies run after every answer (rapid answering by default)
2. A TimeLimitSupervisor that callers drive from their own timer to abandon
   sessions that ran past their time limit

External proctoring collaborators attach their own flags through the
engine's record_integrity_event operation. Flags never change a score.
"""

import datetime
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional

from assessment_engine.common.error_handling import InvalidStateError, SessionNotFoundError
from assessment_engine.common.logger import app_logger
from assessment_engine.assessments.models import IntegrityFlag, Session, utcnow

if TYPE_CHECKING:
    from assessment_engine.assessments.session_service import SessionManager

# Module logger
logger = app_logger.getChild("integrity")

RAPID_ANSWERING = "rapid_answering"
TIME_LIMIT_EXCEEDED = "time_limit_exceeded"


class IntegrityMonitor(ABC):
    """Inspects a session after each answer."""

    @abstractmethod
    def inspect(self, session: Session) -> List[IntegrityFlag]:
        """
        Look for suspicious activity.

        Args:
            session: The session, including the response just recorded

        Returns:
            New flags to attach; empty when nothing is suspicious
        """
        pass


class RapidAnswerMonitor(IntegrityMonitor):
    """Flags sessions that record many answers within a short window."""

    def __init__(self, threshold: int = 5, window_ms: int = 30_000):
        self.threshold = threshold
        self.window_ms = window_ms

    def inspect(self, session: Session) -> List[IntegrityFlag]:
        if len(session.responses) < self.threshold:
            return []

        window = datetime.timedelta(milliseconds=self.window_ms)
        latest = session.responses[-1].timestamp
        recent = [r for r in session.responses if latest - r.timestamp <= window]
        if len(recent) < self.threshold:
            return []

        # One flag per window
        for flag in session.integrity_flags:
            if flag.kind == RAPID_ANSWERING and latest - flag.timestamp <= window:
                return []

        return [IntegrityFlag(
            kind=RAPID_ANSWERING,
            detail=f"{len(recent)} answers within {self.window_ms // 1000} seconds",
            metadata={"answers": len(recent), "window_ms": self.window_ms},
            timestamp=latest,
        )]


class TimeLimitSupervisor:
    """Abandons active sessions whose elapsed time exceeds their time limit."""

    def __init__(self, sessions: 'SessionManager'):
        self.sessions = sessions

    async def sweep(self, now: Optional[datetime.datetime] = None) -> List[str]:
        """
        Abandon every expired active session.

        Args:
            now: Reference time; the current time by default

        Returns:
            IDs of the sessions that were abandoned
        """
        now = now or utcnow()
        abandoned = []
        for session in self.sessions.active_sessions():
            if session.elapsed_ms(now) <= session.settings.time_limit_ms:
                continue
            try:
                await self.sessions.abandon_session(session.id, reason=TIME_LIMIT_EXCEEDED)
            except (InvalidStateError, SessionNotFoundError):
                # Ended by its student while the sweep was running
                continue
            abandoned.append(session.id)

        if abandoned:
            logger.info(f"Abandoned {len(abandoned)} session(s) past their time limit")
        return abandoned
