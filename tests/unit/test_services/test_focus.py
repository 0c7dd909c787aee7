"""Unit tests for the monitored view and its registry."""
import pytest

from rollcall.core.exceptions import ChallengeClosedError, NotFoundError, ValidationError
from rollcall.schemas.challenge import ChallengeState, ExitReason
from rollcall.services.participant import participant_path

from tests.utils import PARTICIPANT_ID, create_session, join


async def participant_doc(services, session, user_id=PARTICIPANT_ID):
    return (await services.store.get(participant_path(session.id, user_id))).data


@pytest.fixture
async def joined(services):
    session = await create_session(services, minutes=10)
    await join(services, session)
    return session


@pytest.mark.unit
class TestEnter:

    @pytest.mark.asyncio
    async def test_enter_starts_challenge_and_countdown(self, services, joined, clock):
        listeners = services.store.listener_count

        view = await services.focus.enter(joined, PARTICIPANT_ID)

        state = view.state()
        assert state.state == ChallengeState.JOINED
        assert state.remaining == "10:00"
        assert state.attempts_remaining == 3
        assert state.exit_reason is None
        assert services.store.listener_count == listeners + 1

        await clock.advance(10)
        assert view.state().state == ChallengeState.AWAITING_CODE
        assert view.state().remaining == "09:50"

    @pytest.mark.asyncio
    async def test_enter_again_returns_running_view(self, services, joined, clock):
        first = await services.focus.enter(joined, PARTICIPANT_ID)
        await clock.advance(5)

        second = await services.focus.enter(joined, PARTICIPANT_ID)

        assert second is first
        # The open timer was not re-armed by the second entry
        await clock.advance(5)
        assert first.challenge.state == ChallengeState.AWAITING_CODE

    @pytest.mark.asyncio
    async def test_enter_without_joining(self, services, joined):
        with pytest.raises(NotFoundError, match="Join the session"):
            await services.focus.enter(joined, "stranger")

    @pytest.mark.asyncio
    async def test_enter_stopped_session(self, services, joined):
        stopped = await services.sessions.stop_session(joined)
        with pytest.raises(ValidationError, match="not active"):
            await services.focus.enter(stopped, PARTICIPANT_ID)

    @pytest.mark.asyncio
    async def test_get_unknown_view(self, services):
        with pytest.raises(NotFoundError):
            services.focus.get("missing", PARTICIPANT_ID)


@pytest.mark.unit
class TestLeaving:

    @pytest.mark.asyncio
    async def test_exit_marks_absent_and_releases_everything(self, services, joined, clock):
        listeners = services.store.listener_count
        view = await services.focus.enter(joined, PARTICIPANT_ID)
        await clock.advance(10)
        await services.focus.submit(joined.id, PARTICIPANT_ID, joined.code)

        state = await services.focus.exit(joined.id, PARTICIPANT_ID)

        assert state.state == ChallengeState.ABSENT_EXITED
        assert state.exit_reason == ExitReason.EXITED
        assert state.remaining is None
        assert view.left
        assert clock.pending == 0
        assert services.store.listener_count == listeners
        doc = await participant_doc(services, joined)
        assert doc["status"] == "absent"
        assert doc["codeVerified"] is True

    @pytest.mark.asyncio
    async def test_submit_after_leaving(self, services, joined, clock):
        await services.focus.enter(joined, PARTICIPANT_ID)
        await clock.advance(10)
        await services.focus.exit(joined.id, PARTICIPANT_ID)

        with pytest.raises(ChallengeClosedError, match="left the monitored view"):
            await services.focus.submit(joined.id, PARTICIPANT_ID, joined.code)

    @pytest.mark.asyncio
    async def test_reenter_after_exit_starts_fresh(self, services, joined, clock):
        first = await services.focus.enter(joined, PARTICIPANT_ID)
        await clock.advance(10)
        await services.focus.submit(joined.id, PARTICIPANT_ID, "WRONG")
        await services.focus.exit(joined.id, PARTICIPANT_ID)

        second = await services.focus.enter(joined, PARTICIPANT_ID)

        assert second is not first
        assert second.state().state == ChallengeState.JOINED
        assert second.state().attempts == 0

    @pytest.mark.asyncio
    async def test_timeout_leaves_view(self, services, joined, clock):
        view = await services.focus.enter(joined, PARTICIPANT_ID)

        await clock.advance(40)

        assert view.exit_reason == ExitReason.CODE_TIMEOUT
        assert view.state().state == ChallengeState.ABSENT_TIMEOUT
        assert clock.pending == 0

    @pytest.mark.asyncio
    async def test_attempts_exceeded_leaves_view(self, services, joined, clock):
        view = await services.focus.enter(joined, PARTICIPANT_ID)
        await clock.advance(10)
        for _ in range(3):
            await services.focus.submit(joined.id, PARTICIPANT_ID, "NOPE")

        assert view.exit_reason == ExitReason.ATTEMPTS_EXCEEDED
        assert clock.pending == 0

    @pytest.mark.asyncio
    async def test_deadline_leaves_view(self, services, clock):
        session = await create_session(services, minutes=1)
        await join(services, session)
        view = await services.focus.enter(session, PARTICIPANT_ID)
        await clock.advance(10)
        await view.submit_code(session.code)

        await clock.advance(50)

        assert view.exit_reason == ExitReason.TIME_UP
        # Verified participants stay present when time runs out
        assert view.state().state == ChallengeState.VERIFIED
        doc = await participant_doc(services, session)
        assert doc["status"] == "present"
        assert clock.pending == 0

    @pytest.mark.asyncio
    async def test_session_deleted_ends_challenge(self, services, joined, clock):
        view = await services.focus.enter(joined, PARTICIPANT_ID)
        await clock.advance(15)
        before = await participant_doc(services, joined)

        await services.sessions.delete_session(joined.id)

        assert view.exit_reason == ExitReason.SESSION_ENDED
        assert view.state().state == ChallengeState.SESSION_ENDED
        assert await participant_doc(services, joined) == before
        assert clock.pending == 0


@pytest.mark.unit
class TestLockout:

    @pytest.mark.asyncio
    async def test_cannot_reenter_after_timeout(self, services, joined, clock):
        await services.focus.enter(joined, PARTICIPANT_ID)
        await clock.advance(40)

        with pytest.raises(ChallengeClosedError):
            await services.focus.enter(joined, PARTICIPANT_ID)

    @pytest.mark.asyncio
    async def test_lockout_survives_a_fresh_registry(self, services, joined, clock):
        await services.focus.enter(joined, PARTICIPANT_ID)
        await clock.advance(10)
        for _ in range(3):
            await services.focus.submit(joined.id, PARTICIPANT_ID, "NOPE")

        # Re-joining does not clear a failed challenge
        await join(services, joined)
        services.focus._views.clear()

        with pytest.raises(ChallengeClosedError):
            await services.focus.enter(joined, PARTICIPANT_ID)


@pytest.mark.unit
class TestDiscard:

    @pytest.mark.asyncio
    async def test_discard_closes_open_views(self, services, joined, clock):
        await join(services, joined, user_id="student-2")
        first = await services.focus.enter(joined, PARTICIPANT_ID)
        second = await services.focus.enter(joined, "student-2")
        await services.focus.exit(joined.id, "student-2")

        closed = await services.focus.discard_session(joined.id)

        assert closed == 2
        assert first.exit_reason == ExitReason.SESSION_ENDED
        assert second.exit_reason == ExitReason.EXITED
        assert services.focus.views_for(joined.id) == []
        assert clock.pending == 0
