"""
Ballot Recorder Tests

Bracket ballots:
- One effective vote per voter per match, also under concurrency
- Votes outside the current round, on byes or for outsiders are rejected

Scored ballots:
- Range and type validation
- Revision overwrites the earlier score
"""
import asyncio

import pytest
from sqlalchemy import func, select

from foodfight.errors import (
    DuplicateVoteError,
    InvalidPhaseError,
    InvalidScoreError,
    NotFoundError,
    ValidationFailedError,
)
from foodfight.orm.match import Ballot
from foodfight.services.ballot_service import BallotService, validate_score
from foodfight.services.bracket_builder import BracketBuilder
from foodfight.services.lifecycle_service import LifecycleService
from foodfight.services.tally_service import TallyService


@pytest.fixture
def voting_bracket(db, make_session, rng):
    """Bracket session in voting with round 1 built."""
    async def _make(names=("A", "B", "C")):
        session, candidates = await make_session(list(names))
        await LifecycleService.start_voting(db, session.id, "alice", rng=rng)
        matches = await BracketBuilder.get_round_matches(db, session.id, 1)
        return session, candidates, matches
    return _make


@pytest.fixture
def voting_scored(db, make_session):
    async def _make(names=("A", "B")):
        session, candidates = await make_session(list(names), mode="scored")
        await LifecycleService.start_voting(db, session.id, "alice")
        return session, candidates
    return _make


def _contested(matches):
    return next(m for m in matches if not m.is_bye)


def _bye(matches):
    return next(m for m in matches if m.is_bye)


# =============================================================================
# Bracket ballots
# =============================================================================

@pytest.mark.asyncio
class TestCastVote:

    async def test_vote_increments_chosen_slot(self, db, voting_bracket):
        _, _, matches = await voting_bracket()
        match = _contested(matches)

        updated = await BallotService.cast_vote(db, match.id, match.slot_b_id, "bob")

        assert updated.votes_a == 0
        assert updated.votes_b == 1

    async def test_second_vote_same_voter_rejected(self, db, voting_bracket):
        _, _, matches = await voting_bracket()
        match = _contested(matches)
        await BallotService.cast_vote(db, match.id, match.slot_a_id, "bob")

        with pytest.raises(DuplicateVoteError) as exc_info:
            await BallotService.cast_vote(db, match.id, match.slot_b_id, "bob")

        assert exc_info.value.message == "Already voted"
        refreshed = await BracketBuilder.get_round_matches(db, match.session_id, 1, fresh=True)
        counted = next(m for m in refreshed if m.id == match.id)
        assert (counted.votes_a, counted.votes_b) == (1, 0)

    async def test_totals_match_distinct_voters(self, db, voting_bracket):
        _, _, matches = await voting_bracket(("A", "B"))
        match = matches[0]

        for i, voter in enumerate(["v1", "v2", "v3", "v4", "v5"]):
            choice = match.slot_a_id if i % 2 == 0 else match.slot_b_id
            await BallotService.cast_vote(db, match.id, choice, voter)

        updated = (await BracketBuilder.get_round_matches(db, match.session_id, 1, fresh=True))[0]
        assert (updated.votes_a, updated.votes_b) == (3, 2)
        ballots = await db.scalar(select(func.count(Ballot.id)).where(Ballot.match_id == match.id))
        assert ballots == updated.votes_a + updated.votes_b

    async def test_concurrent_duplicate_votes_count_once(self, session_factory, voting_bracket):
        _, _, matches = await voting_bracket(("A", "B"))
        match = matches[0]

        async def vote():
            async with session_factory() as own_db:
                try:
                    await BallotService.cast_vote(own_db, match.id, match.slot_a_id, "bob")
                    return "ok"
                except DuplicateVoteError:
                    return "duplicate"

        results = await asyncio.gather(*[vote() for _ in range(5)])

        assert results.count("ok") == 1
        assert results.count("duplicate") == 4
        async with session_factory() as check_db:
            updated = (await BracketBuilder.get_round_matches(check_db, match.session_id, 1))[0]
        assert (updated.votes_a, updated.votes_b) == (1, 0)

    async def test_votes_racing_the_close_are_counted_or_rejected(self, session_factory, voting_bracket):
        session, _, matches = await voting_bracket(("A", "B"))
        session_id = session.id
        match_id, slot_a, slot_b = matches[0].id, matches[0].slot_a_id, matches[0].slot_b_id

        async def vote(voter):
            async with session_factory() as own_db:
                try:
                    await BallotService.cast_vote(own_db, match_id, slot_b, voter)
                    return True
                except InvalidPhaseError:
                    return False

        async def close():
            async with session_factory() as own_db:
                return await LifecycleService.check_phase_end(own_db, session_id, force=True)

        *accepted, closed = await asyncio.gather(vote("v1"), vote("v2"), vote("v3"), close())

        assert closed is True
        async with session_factory() as check_db:
            final = (await BracketBuilder.get_round_matches(check_db, session_id, 1))[0]
            completed = await LifecycleService.get_session_or_404(check_db, session_id)
        assert final.votes_b == accepted.count(True)
        assert final.votes_a == 0
        assert completed.winner_id == (slot_b if any(accepted) else slot_a)

    async def test_vote_on_bye_rejected(self, db, voting_bracket):
        _, _, matches = await voting_bracket()

        bye = _bye(matches)
        with pytest.raises(InvalidPhaseError):
            await BallotService.cast_vote(db, bye.id, bye.slot_a_id, "bob")

    async def test_vote_for_outsider_rejected(self, db, voting_bracket):
        _, candidates, matches = await voting_bracket()
        match = _contested(matches)
        outsider = next(c for c in candidates if c.id not in (match.slot_a_id, match.slot_b_id))

        with pytest.raises(ValidationFailedError):
            await BallotService.cast_vote(db, match.id, outsider.id, "bob")

    async def test_vote_on_unknown_match(self, db):
        with pytest.raises(NotFoundError):
            await BallotService.cast_vote(db, 404, 1, "bob")

    async def test_vote_after_round_closed_rejected(self, db, voting_bracket):
        session, _, matches = await voting_bracket(("A", "B", "C", "D"))
        match = matches[0]
        await LifecycleService.check_phase_end(db, session.id, force=True)

        with pytest.raises(InvalidPhaseError):
            await BallotService.cast_vote(db, match.id, match.slot_a_id, "late")

    async def test_vote_after_completion_rejected(self, db, voting_bracket):
        session, _, matches = await voting_bracket(("A", "B"))
        await LifecycleService.check_phase_end(db, session.id, force=True)

        with pytest.raises(InvalidPhaseError):
            await BallotService.cast_vote(db, matches[0].id, matches[0].slot_a_id, "late")

    async def test_user_votes(self, db, voting_bracket):
        session, _, matches = await voting_bracket(("A", "B"))
        match = matches[0]
        await BallotService.cast_vote(db, match.id, match.slot_b_id, "bob")

        assert await BallotService.user_votes(db, session.id, "bob") == {match.id: match.slot_b_id}
        assert await BallotService.user_votes(db, session.id, "carol") == {}


# =============================================================================
# Scored ballots
# =============================================================================

class TestValidateScore:

    @pytest.mark.parametrize("score", [1, 3, 5])
    def test_accepts_range(self, score):
        assert validate_score(score) == score

    @pytest.mark.parametrize("score", [0, 6, -1, 2.5, "4", None, True])
    def test_rejects_everything_else(self, score):
        with pytest.raises(InvalidScoreError):
            validate_score(score)


@pytest.mark.asyncio
class TestSubmitScore:

    async def test_revision_overwrites(self, db, voting_scored):
        session, candidates = await voting_scored()
        a = candidates[0]

        await BallotService.submit_score(db, session.id, a.id, "bob", 2)
        saved = await BallotService.submit_score(db, session.id, a.id, "bob", 5)

        assert saved.score == 5
        standings = await TallyService.standings(db, session.id)
        assert [(s.candidate_id, s.average, s.count) for s in standings] == [(a.id, 5.0, 1)]

    async def test_invalid_score_rejected(self, db, voting_scored):
        session, candidates = await voting_scored()

        with pytest.raises(InvalidScoreError):
            await BallotService.submit_score(db, session.id, candidates[0].id, "bob", 6)

    async def test_scores_need_scored_mode(self, db, voting_bracket):
        session, candidates, _ = await voting_bracket(("A", "B"))

        with pytest.raises(InvalidPhaseError):
            await BallotService.submit_score(db, session.id, candidates[0].id, "bob", 4)

    async def test_scores_need_voting_phase(self, db, make_session):
        session, candidates = await make_session(["A", "B"], mode="scored")

        with pytest.raises(InvalidPhaseError):
            await BallotService.submit_score(db, session.id, candidates[0].id, "bob", 4)

    async def test_candidate_must_belong_to_session(self, db, voting_scored, make_session):
        session, _ = await voting_scored()
        _, others = await make_session(["Elsewhere"], name="Dinner", mode="scored")

        with pytest.raises(NotFoundError):
            await BallotService.submit_score(db, session.id, others[0].id, "bob", 4)

    async def test_score_after_close_rejected(self, db, voting_scored):
        session, candidates = await voting_scored()
        await LifecycleService.check_phase_end(db, session.id, force=True)

        with pytest.raises(InvalidPhaseError):
            await BallotService.submit_score(db, session.id, candidates[0].id, "bob", 4)

    async def test_concurrent_revisions_leave_one_row(self, session_factory, voting_scored):
        session, candidates = await voting_scored()
        a = candidates[0]

        async def score(value):
            async with session_factory() as own_db:
                await BallotService.submit_score(own_db, session.id, a.id, "bob", value)

        await asyncio.gather(*[score(v) for v in (1, 2, 3, 4, 5)])

        async with session_factory() as check_db:
            standings = await TallyService.standings(check_db, session.id)
        assert len(standings) == 1
        assert standings[0].count == 1
        assert standings[0].average in {1.0, 2.0, 3.0, 4.0, 5.0}
