"""Wiring of the attendance engine for one process."""
from functools import partial
from typing import Dict, Mapping, Optional

from rollcall.core.clock import Clock, SystemClock
from rollcall.core.config import Settings
from rollcall.core.constants import ATTENDANCE_COLLECTION
from rollcall.core.exceptions import NotFoundError, RollcallError, StoreUnavailable
from rollcall.core.logging_config import get_logger
from rollcall.core.utils import generate_session_code
from rollcall.db.session import make_engine
from rollcall.schemas.attendance import AttendanceRecord
from rollcall.schemas.participant import ParticipantStatus
from rollcall.schemas.session import Session
from rollcall.services.attendance import AttendanceHistory
from rollcall.services.focus import FocusRegistry
from rollcall.services.participant import ParticipantTracker
from rollcall.services.reconciliation import ReconciliationEngine
from rollcall.services.session import SessionConsole, SessionManager
from rollcall.store.base import DocumentStore, Index
from rollcall.store.memory import MemoryDocumentStore
from rollcall.store.sql import SqlDocumentStore

logger = get_logger(__name__)

# Ordered queries the engine issues; anything else falls back to unordered
STORE_INDEXES = (
    Index(ATTENDANCE_COLLECTION, ("ownerId",), "createdAt"),
    Index(ATTENDANCE_COLLECTION, ("participantIds",), "createdAt"),
)


class Services:
    """The engine's components plus the owner consoles currently running."""

    def __init__(self, settings: Settings, clock: Clock, store: DocumentStore):
        self.settings = settings
        self.clock = clock
        self.store = store
        self.sessions = SessionManager(store, partial(generate_session_code, settings.SESSION_CODE_LENGTH))
        self.participants = ParticipantTracker(store)
        self.focus = FocusRegistry(
            store,
            clock,
            open_delay=settings.CHALLENGE_OPEN_DELAY_SECONDS,
            window=settings.CHALLENGE_WINDOW_SECONDS,
            max_attempts=settings.CHALLENGE_MAX_ATTEMPTS,
            tick_interval=settings.COUNTDOWN_INTERVAL_SECONDS,
        )
        self.reconciliation = ReconciliationEngine(self.sessions, self.participants)
        self.attendance = AttendanceHistory(store, limit=settings.RECENT_ATTENDANCE_LIMIT)
        self.consoles: Dict[str, SessionConsole] = {}

    async def open_console(self, session: Session) -> SessionConsole:
        """Start the owner countdown and participant feed for ``session``."""
        existing = self.consoles.get(session.id)
        if existing is not None and not existing.closed:
            return existing

        console = SessionConsole(
            self.sessions,
            self.participants,
            session,
            on_ended=self._console_ended,
            tick_interval=self.settings.COUNTDOWN_INTERVAL_SECONDS,
        )
        self.consoles[session.id] = console
        return await console.start()

    async def stop_session(self, session: Session) -> Session:
        console = self.consoles.get(session.id)
        if console is not None and not console.closed:
            return await console.stop()
        return await self.sessions.stop_session(session)

    async def finalize(
        self,
        session: Session,
        status_overrides: Optional[Mapping[str, ParticipantStatus]] = None,
    ) -> AttendanceRecord:
        console = self.consoles.get(session.id)
        if console is not None:
            console.countdown.cancel()
        try:
            record = await self.reconciliation.finalize(session, status_overrides=status_overrides)
        except RollcallError:
            if console is not None:
                await self._recover_console(console)
            raise
        if console is not None:
            await console.close()
        await self.focus.discard_session(session.id)
        return record

    async def _recover_console(self, console: SessionConsole) -> None:
        """Keep the console running if the session is still active, else close it."""
        try:
            still_active = (await self.sessions.get_session(console.session.id)).is_active
        except NotFoundError:
            still_active = False
        except StoreUnavailable:
            # Unknown; the countdown retries the expiry and closes on its own
            still_active = True
        if still_active:
            console.resume()
        else:
            await console.close()

    async def shutdown(self) -> None:
        for console in list(self.consoles.values()):
            await console.close()
        self.consoles.clear()

    def _console_ended(self, session: Session) -> None:
        self.consoles.pop(session.id, None)
        logger.info("session_console_closed", session_id=session.id, status=session.status.value)


def build_store(settings: Settings, clock: Clock) -> DocumentStore:
    if settings.STORE_BACKEND == "sql":
        store = SqlDocumentStore(clock, make_engine(settings.get_database_url()), indexes=STORE_INDEXES)
        store.create_all()
        return store
    return MemoryDocumentStore(clock, indexes=STORE_INDEXES)


def build_services(
    settings: Settings,
    clock: Optional[Clock] = None,
    store: Optional[DocumentStore] = None,
) -> Services:
    clock = clock or SystemClock()
    store = store or build_store(settings, clock)
    logger.info("services_built", store=type(store).__name__, clock=type(clock).__name__)
    return Services(settings, clock, store)
