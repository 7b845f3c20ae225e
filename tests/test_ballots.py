"""
Unit tests for vote casting and receipt verification
"""
from datetime import timedelta

import pytest

from schoolvote.audit import AuditActionType
from schoolvote.models import ABSTAIN
from schoolvote.persistence import InMemoryRecordStore
from schoolvote.services import build_services
from schoolvote.tokens import generate_vote_token, is_valid_token_format


@pytest.fixture
def voter(registry, roster):
    return registry.approve_voting_right(10001, approved_by="teacher.a")


class TestCastVote:
    """Test the vote casting rules"""

    def test_successful_vote(self, ballot_box, voter, open_election, now):
        result = ballot_box.cast_vote(voter.id, open_election.id, {"president": "cand-1"}, now)

        assert result.success is True
        assert result.message == "Vote submitted successfully"
        assert is_valid_token_format(result.token) is True

    def test_vote_updates_student_election_and_audit(self, services, ballot_box, voter, open_election, now):
        ballot_box.cast_vote(voter.id, open_election.id, {"president": "cand-1"}, now)

        student = services.students.get_student(voter.id)
        assert open_election.id in student.voted_in
        assert student.last_active is not None
        assert services.elections.get_election(open_election.id).total_votes == 1
        assert len(services.audit.by_action(AuditActionType.VOTE_CAST)) == 1

    def test_unknown_student(self, ballot_box, open_election, now):
        result = ballot_box.cast_vote(99999, open_election.id, {}, now)

        assert result.success is False
        assert result.message == "Student not found"
        assert result.token is None

    def test_requires_voting_right(self, ballot_box, roster, open_election, now):
        result = ballot_box.cast_vote(10002, open_election.id, {}, now)

        assert result.success is False
        assert result.message == "Voting right has not been approved"
        assert ballot_box.has_voted_in_election(10002, open_election.id) is False

    def test_election_must_be_open(self, ballot_box, voter, open_election, now):
        before = ballot_box.cast_vote(voter.id, open_election.id, {}, now - timedelta(days=2))
        after = ballot_box.cast_vote(voter.id, open_election.id, {}, now + timedelta(days=2))
        missing = ballot_box.cast_vote(voter.id, "missing", {}, now)

        for result in (before, after, missing):
            assert result.success is False
            assert result.message == "Election is not open for voting"

    def test_double_vote_refused(self, services, ballot_box, voter, open_election, now):
        first = ballot_box.cast_vote(voter.id, open_election.id, {}, now)
        second = ballot_box.cast_vote(voter.id, open_election.id, {}, now + timedelta(minutes=1))

        assert first.success is True
        assert second.success is False
        assert second.message == "You have already voted in this election"
        assert services.elections.get_election(open_election.id).total_votes == 1
        assert ballot_box.get_student_token(voter.id, open_election.id) == first.token


class FailingBatchStore(InMemoryRecordStore):
    """Record store whose batched writes always fail"""

    def put_many(self, writes):
        raise RuntimeError("disk full")


class TestCastVoteAtomicity:
    """Test that a failed vote leaves no partial state"""

    def test_failed_write_records_nothing(self, settings, now):
        services = build_services(settings, FailingBatchStore())
        services.students.add_student({
            "id": 10001, "name": "Somchai", "surname": "Jaidee",
            "classroom": "M.6/1", "national_id": "1100000000001",
        })
        services.students.approve_voting_right(10001)
        election = services.elections.create_election({
            "title": "Student Committee 2025",
            "type": "student-committee",
            "startDate": now - timedelta(days=1),
            "endDate": now + timedelta(days=1),
        })

        with pytest.raises(RuntimeError):
            services.ballots.cast_vote(10001, election.id, {"president": "cand-1"}, now)

        assert services.ballots.has_voted_in_election(10001, election.id) is False
        assert services.ballots.get_ballots(election.id) == []
        assert services.students.get_student(10001).voted_in == set()
        assert services.elections.get_election(election.id).total_votes == 0


class TestBallotSecrecy:
    """Test that choices are stored apart from voters"""

    def test_ballot_holds_no_student(self, ballot_box, voter, open_election, now):
        ballot_box.cast_vote(voter.id, open_election.id, {"president": "cand-1"}, now)

        ballots = ballot_box.get_ballots(open_election.id)
        assert len(ballots) == 1
        dumped = ballots[0].model_dump()
        assert set(dumped) == {"election_id", "choices"}

    def test_missing_positions_abstain_and_unknown_are_dropped(self, ballot_box, voter, open_election, now):
        ballot_box.cast_vote(voter.id, open_election.id, {"president": "cand-1", "ghost": "cand-9"}, now)

        choices = ballot_box.get_ballots(open_election.id)[0].choices
        assert choices["president"] == "cand-1"
        assert choices["secretary"] == ABSTAIN
        assert "ghost" not in choices

    def test_disabled_positions_excluded(self, services, ballot_box, voter, draft_election, now):
        services.elections.toggle_position(draft_election.id, "treasurer", now)
        voting_day = now + timedelta(days=1, hours=2)

        result = ballot_box.cast_vote(voter.id, draft_election.id, {"treasurer": "cand-3"}, voting_day)

        assert result.success is True
        assert "treasurer" not in ballot_box.get_ballots(draft_election.id)[0].choices

    def test_vote_record_holds_no_choices(self, ballot_box, voter, open_election, now):
        ballot_box.cast_vote(voter.id, open_election.id, {"president": "cand-1"}, now)

        record = ballot_box.get_vote_records(open_election.id)[0]
        assert record.student_id == voter.id
        assert not hasattr(record, "choices")


class TestTokens:
    """Test receipt lookup"""

    def test_has_voted_only_reports_existence(self, ballot_box, voter, open_election, now):
        assert ballot_box.has_voted_in_election(voter.id, open_election.id) is False

        ballot_box.cast_vote(voter.id, open_election.id, {}, now)

        assert ballot_box.has_voted_in_election(voter.id, open_election.id) is True
        assert ballot_box.has_voted_in_election(10002, open_election.id) is False

    def test_token_is_deterministic_for_student_election_and_time(self, ballot_box, voter, open_election, now):
        result = ballot_box.cast_vote(voter.id, open_election.id, {}, now)

        expected = generate_vote_token(f"{voter.id}:{open_election.id}", int(now.timestamp() * 1000))
        assert result.token == expected

    def test_verify_vote_token(self, ballot_box, voter, open_election, now):
        result = ballot_box.cast_vote(voter.id, open_election.id, {}, now)

        record = ballot_box.verify_vote_token(result.token.lower())

        assert record is not None
        assert record.election_id == open_election.id

    @pytest.mark.parametrize("token", ["VOTE-0000-0000", "not-a-token", None, ""])
    def test_unknown_or_malformed_token(self, ballot_box, voter, open_election, now, token):
        ballot_box.cast_vote(voter.id, open_election.id, {}, now)

        assert ballot_box.verify_vote_token(token) is None
