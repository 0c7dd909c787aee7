"""Unit tests for the verification challenge state machine."""
from unittest.mock import AsyncMock

import pytest

from rollcall.core.exceptions import ChallengeClosedError, StoreUnavailable
from rollcall.schemas.challenge import ChallengeState
from rollcall.services.challenge import VerificationChallenge
from rollcall.services.participant import participant_path

from tests.utils import PARTICIPANT_ID, create_session, join


@pytest.fixture
async def joined(services):
    session = await create_session(services, minutes=15)
    await join(services, session)
    return session


@pytest.fixture
def make_challenge(services, joined):
    transitions = []

    def factory(**kwargs):
        challenge = VerificationChallenge(
            services.store,
            services.clock,
            joined.id,
            PARTICIPANT_ID,
            joined.code,
            on_transition=lambda old, new: transitions.append((old, new)),
            **kwargs,
        )
        challenge.transitions = transitions
        return challenge

    return factory


async def participant_doc(services, session):
    return (await services.store.get(participant_path(session.id, PARTICIPANT_ID))).data


async def open_challenge(challenge, clock):
    challenge.start()
    await clock.advance(10)
    assert challenge.state == ChallengeState.AWAITING_CODE


@pytest.mark.unit
class TestOpening:

    @pytest.mark.asyncio
    async def test_opens_after_ten_seconds(self, make_challenge, clock):
        challenge = make_challenge()
        challenge.start()

        await clock.advance(9.9)
        assert challenge.state == ChallengeState.JOINED

        await clock.advance(0.1)
        assert challenge.state == ChallengeState.AWAITING_CODE
        assert challenge.opened_at == clock.now_ms()
        assert challenge.transitions == [(ChallengeState.JOINED, ChallengeState.AWAITING_CODE)]

    @pytest.mark.asyncio
    async def test_submit_before_open_is_refused(self, make_challenge, clock):
        challenge = make_challenge()
        challenge.start()
        with pytest.raises(ChallengeClosedError, match="not opened"):
            await challenge.submit("ANY")
        assert challenge.attempts == 0

    @pytest.mark.asyncio
    async def test_start_twice_arms_one_timer(self, make_challenge, clock):
        challenge = make_challenge()
        challenge.start()
        challenge.start()
        assert clock.pending == 1

    @pytest.mark.asyncio
    async def test_timers_are_one_shot(self, make_challenge, clock):
        challenge = make_challenge()
        challenge.start()

        await clock.advance(5)
        assert clock.pending == 1

        await clock.advance(5)
        assert challenge.state == ChallengeState.AWAITING_CODE
        assert clock.pending == 1

        await clock.advance(15)
        assert clock.pending == 1


@pytest.mark.unit
class TestCodeEntry:

    @pytest.mark.asyncio
    async def test_correct_code_verifies(self, make_challenge, services, joined, clock):
        challenge = make_challenge()
        await open_challenge(challenge, clock)

        result = await challenge.submit(f"  {joined.code.lower()} ")

        assert result.accepted is True
        assert result.state == ChallengeState.VERIFIED
        assert result.error is None
        doc = await participant_doc(services, joined)
        assert doc["status"] == "present"
        assert doc["present"] is True
        assert doc["codeVerified"] is True
        assert doc["exitedEarly"] is False
        assert doc["codeVerifiedAt"] >= clock.now_ms()
        assert not challenge.has_pending_timers
        assert clock.pending == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("wrong_attempts", [0, 1, 2])
    async def test_verified_after_fewer_than_three_wrong_attempts(self, make_challenge, joined, clock, wrong_attempts):
        challenge = make_challenge()
        await open_challenge(challenge, clock)

        for _ in range(wrong_attempts):
            result = await challenge.submit("WRONG1")
            assert result.accepted is False
            assert result.state == ChallengeState.AWAITING_CODE

        result = await challenge.submit(joined.code)
        assert result.accepted is True
        assert challenge.state == ChallengeState.VERIFIED
        assert challenge.attempts == wrong_attempts

    @pytest.mark.asyncio
    async def test_wrong_code_messages(self, make_challenge, clock):
        challenge = make_challenge()
        await open_challenge(challenge, clock)

        first = await challenge.submit("WRONG1")
        assert first.attempts == 1
        assert first.attempts_remaining == 2
        assert first.error == "Incorrect code. 2 attempts remaining."

        second = await challenge.submit("WRONG2")
        assert second.error == "Incorrect code. 1 attempt remaining."

    @pytest.mark.asyncio
    @pytest.mark.parametrize("entry", ["", "   ", None])
    async def test_empty_entry_costs_nothing(self, make_challenge, clock, entry):
        challenge = make_challenge()
        await open_challenge(challenge, clock)

        result = await challenge.submit(entry)

        assert result.accepted is False
        assert result.error == "Please enter the code."
        assert result.attempts == 0
        assert challenge.state == ChallengeState.AWAITING_CODE

    @pytest.mark.asyncio
    async def test_three_wrong_attempts_exceeded(self, make_challenge, services, joined, clock):
        challenge = make_challenge()
        await open_challenge(challenge, clock)

        for _ in range(2):
            await challenge.submit("WRONG")
        result = await challenge.submit("WRONG")

        assert result.accepted is False
        assert result.state == ChallengeState.ABSENT_EXCEEDED
        assert result.attempts_remaining == 0
        assert challenge.is_terminal
        doc = await participant_doc(services, joined)
        assert doc["status"] == "absent"
        assert doc["present"] is False
        assert doc["exitedEarly"] is True
        assert doc["codeAttemptsExceeded"] is True
        assert doc["codeVerified"] is False
        assert doc["exitedAt"] is not None
        assert clock.pending == 0

        # No further input is accepted, not even the right code
        with pytest.raises(ChallengeClosedError):
            await challenge.submit(joined.code)

    @pytest.mark.asyncio
    async def test_submit_after_verified_is_refused(self, make_challenge, joined, clock):
        challenge = make_challenge()
        await open_challenge(challenge, clock)
        await challenge.submit(joined.code)
        with pytest.raises(ChallengeClosedError, match="already verified"):
            await challenge.submit(joined.code)


@pytest.mark.unit
class TestTimeout:

    @pytest.mark.asyncio
    async def test_window_is_thirty_seconds_after_opening(self, make_challenge, clock):
        challenge = make_challenge()
        challenge.start()

        await clock.advance(39.9)
        assert challenge.state == ChallengeState.AWAITING_CODE

        await clock.advance(0.1)
        assert challenge.state == ChallengeState.ABSENT_TIMEOUT

    @pytest.mark.asyncio
    async def test_timeout_marks_absent(self, make_challenge, services, joined, clock):
        challenge = make_challenge()
        challenge.start()
        await clock.advance(40)

        doc = await participant_doc(services, joined)
        assert doc["status"] == "absent"
        assert doc["codeTimeoutAbsent"] is True
        assert doc["codeVerified"] is False
        assert doc["exitedEarly"] is True
        assert challenge.transitions[-1] == (ChallengeState.AWAITING_CODE, ChallengeState.ABSENT_TIMEOUT)

    @pytest.mark.asyncio
    async def test_wrong_attempts_do_not_extend_window(self, make_challenge, clock):
        challenge = make_challenge()
        await open_challenge(challenge, clock)
        await clock.advance(20)
        await challenge.submit("WRONG")
        await clock.advance(10)
        assert challenge.state == ChallengeState.ABSENT_TIMEOUT

    @pytest.mark.asyncio
    async def test_verified_just_before_timeout_stays_verified(self, make_challenge, services, joined, clock):
        challenge = make_challenge()
        await open_challenge(challenge, clock)

        await clock.advance(29.9)
        await challenge.submit(joined.code)
        await clock.advance(0.1)
        await clock.advance(60)

        assert challenge.state == ChallengeState.VERIFIED
        doc = await participant_doc(services, joined)
        assert doc["status"] == "present"
        assert doc.get("codeTimeoutAbsent") is None
        assert challenge.transitions[-1] == (ChallengeState.AWAITING_CODE, ChallengeState.VERIFIED)


@pytest.mark.unit
class TestExit:

    @pytest.mark.asyncio
    async def test_exit_after_verified(self, make_challenge, services, joined, clock):
        challenge = make_challenge()
        await open_challenge(challenge, clock)
        await challenge.submit(joined.code)

        assert await challenge.exit() == ChallengeState.ABSENT_EXITED
        doc = await participant_doc(services, joined)
        assert doc["status"] == "absent"
        assert doc["present"] is False
        assert doc["exitedEarly"] is True
        assert doc.get("codeTimeoutAbsent") is None
        assert doc.get("codeAttemptsExceeded") is not True

    @pytest.mark.asyncio
    async def test_exit_before_open_cancels_timers(self, make_challenge, clock):
        challenge = make_challenge()
        challenge.start()
        await clock.advance(5)

        await challenge.exit()
        await clock.advance(60)

        assert challenge.state == ChallengeState.ABSENT_EXITED
        assert clock.pending == 0

    @pytest.mark.asyncio
    async def test_exit_wins_against_pending_timeout(self, make_challenge, services, joined, clock):
        challenge = make_challenge()
        challenge.start()
        await clock.advance(39.9)

        await challenge.exit()
        await clock.advance(1)

        assert challenge.state == ChallengeState.ABSENT_EXITED
        doc = await participant_doc(services, joined)
        assert doc.get("codeTimeoutAbsent") is None

    @pytest.mark.asyncio
    async def test_exit_after_terminal_is_noop(self, make_challenge, clock):
        challenge = make_challenge()
        challenge.start()
        await clock.advance(40)
        count = len(challenge.transitions)

        assert await challenge.exit() == ChallengeState.ABSENT_TIMEOUT
        assert len(challenge.transitions) == count


@pytest.mark.unit
class TestSessionEnd:

    @pytest.mark.asyncio
    async def test_session_end_leaves_participant_untouched(self, make_challenge, services, joined, clock):
        challenge = make_challenge()
        await open_challenge(challenge, clock)
        before = await participant_doc(services, joined)

        assert await challenge.end_session() == ChallengeState.SESSION_ENDED
        await clock.advance(60)

        assert await participant_doc(services, joined) == before
        assert clock.pending == 0

    @pytest.mark.asyncio
    async def test_session_end_after_verified(self, make_challenge, joined, clock):
        challenge = make_challenge()
        await open_challenge(challenge, clock)
        await challenge.submit(joined.code)
        assert await challenge.end_session() == ChallengeState.SESSION_ENDED

    @pytest.mark.asyncio
    async def test_session_end_after_terminal_is_noop(self, make_challenge, clock):
        challenge = make_challenge()
        challenge.start()
        await clock.advance(40)
        assert await challenge.end_session() == ChallengeState.ABSENT_TIMEOUT


@pytest.mark.unit
class TestPersistenceFailures:
    """Store failures never trap the participant in the monitored view."""

    @pytest.mark.asyncio
    async def test_store_unavailable_still_transitions(self, make_challenge, services, joined, clock, monkeypatch):
        challenge = make_challenge()
        await open_challenge(challenge, clock)
        failing = AsyncMock(side_effect=StoreUnavailable("store unreachable"))
        monkeypatch.setattr(services.store, "update", failing)

        await clock.advance(30)

        assert challenge.state == ChallengeState.ABSENT_TIMEOUT
        failing.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_store_unavailable_on_verify(self, make_challenge, services, joined, clock, monkeypatch):
        challenge = make_challenge()
        await open_challenge(challenge, clock)
        monkeypatch.setattr(services.store, "update", AsyncMock(side_effect=StoreUnavailable("down")))

        result = await challenge.submit(joined.code)

        assert result.accepted is True
        assert challenge.state == ChallengeState.VERIFIED

    @pytest.mark.asyncio
    async def test_participant_deleted_still_transitions(self, make_challenge, services, joined, clock):
        challenge = make_challenge()
        await open_challenge(challenge, clock)
        await services.store.delete(participant_path(joined.id, PARTICIPANT_ID))

        await challenge.exit()

        assert challenge.state == ChallengeState.ABSENT_EXITED

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self, make_challenge, services, joined, clock, monkeypatch):
        challenge = make_challenge()
        await open_challenge(challenge, clock)
        monkeypatch.setattr(services.store, "update", AsyncMock(side_effect=RuntimeError("bug")))

        with pytest.raises(RuntimeError):
            await challenge.exit()


@pytest.mark.unit
class TestConfiguration:

    @pytest.mark.asyncio
    async def test_custom_timings_and_budget(self, make_challenge, clock):
        challenge = make_challenge(open_delay=1, window=5, max_attempts=1)
        challenge.start()
        await clock.advance(1)
        result = await challenge.submit("WRONG")
        assert result.state == ChallengeState.ABSENT_EXCEEDED
