"""Vote casting and receipt verification.

Who voted and what was chosen are stored apart: a ``VoteRecord`` names the
student and holds the receipt token, a ``BallotEntry`` holds only the choices.
Nothing links a ballot entry back to a vote record.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Dict, List, Mapping, Optional

from .audit import AuditActionType, AuditTrail
from .elections import NAMESPACE as ELECTIONS_NAMESPACE
from .elections import ElectionLifecycle
from .models import (
    ABSTAIN,
    BallotEntry,
    CastVoteResult,
    ElectionStatus,
    VoteRecord,
    ensure_utc,
    utcnow,
)
from .persistence import RecordStore
from .students import NAMESPACE as STUDENTS_NAMESPACE
from .students import StudentRegistry
from .tokens import generate_vote_token, is_valid_token_format, normalize_token

logger = logging.getLogger(__name__)

HISTORY_NAMESPACE = "vote_history"
BALLOT_NAMESPACE = "ballots"


def _history_key(student_id: int, election_id: str) -> str:
    return f"{election_id}:{student_id}"


class BallotBox:

    def __init__(self, store: RecordStore, registry: StudentRegistry,
                 elections: ElectionLifecycle, audit: AuditTrail) -> None:
        self._store = store
        self._registry = registry
        self._elections = elections
        self._audit = audit

    def _get_vote_record(self, student_id: int, election_id: str) -> Optional[VoteRecord]:
        row = self._store.get(HISTORY_NAMESPACE, _history_key(student_id, election_id))
        return VoteRecord.model_validate(row) if row else None

    def has_voted_in_election(self, student_id: int, election_id: str) -> bool:
        return self._get_vote_record(student_id, election_id) is not None

    def get_student_token(self, student_id: int, election_id: str) -> Optional[str]:
        record = self._get_vote_record(student_id, election_id)
        return record.token if record else None

    def get_vote_records(self, election_id: str) -> List[VoteRecord]:
        records = [VoteRecord.model_validate(row) for row in self._store.list(HISTORY_NAMESPACE)]
        return [r for r in records if r.election_id == str(election_id)]

    def get_ballots(self, election_id: str) -> List[BallotEntry]:
        ballots = [BallotEntry.model_validate(row) for row in self._store.list(BALLOT_NAMESPACE)]
        return [b for b in ballots if b.election_id == str(election_id)]

    def cast_vote(self, student_id: int, election_id: str, choices: Mapping[str, Optional[str]],
                  now: Optional[datetime] = None) -> CastVoteResult:
        """
        Cast one ballot for a student.

        Choices map position id to candidate id; ``None`` or a missing enabled
        position counts as an abstention. Choices for positions that are not
        enabled in the election are dropped.
        """
        now = ensure_utc(now) if now is not None else utcnow()
        election_id = str(election_id)

        student = self._registry.get_student(student_id)
        if student is None:
            logger.warning("Vote refused: unknown student %s", student_id, extra={"student_id": student_id})
            return CastVoteResult(success=False, message="Student not found")
        if not student.voting_approved:
            logger.warning("Vote refused: student %s has no voting right", student_id,
                           extra={"student_id": student_id, "election_id": election_id})
            return CastVoteResult(success=False, message="Voting right has not been approved")

        election = self._elections.get_election(election_id, now)
        if election is None or election.status != ElectionStatus.OPEN:
            logger.warning("Vote refused: election %s is not open", election_id,
                           extra={"student_id": student_id, "election_id": election_id})
            return CastVoteResult(success=False, message="Election is not open for voting")

        if self.has_voted_in_election(student_id, election_id):
            logger.warning("Vote refused: student %s already voted", student_id,
                           extra={"student_id": student_id, "election_id": election_id})
            return CastVoteResult(success=False, message="You have already voted in this election")

        enabled = [p.id for p in election.positions if p.enabled]
        ballot: Dict[str, str] = {}
        for position_id in enabled:
            choice = choices.get(position_id)
            ballot[position_id] = str(choice) if choice else ABSTAIN

        token = generate_vote_token(f"{student_id}:{election_id}", int(now.timestamp() * 1000))
        record = VoteRecord(election_id=election_id, student_id=student_id, token=token, cast_at=now)
        voter = self._registry.with_vote_recorded(student, election_id, now)
        counted = self._elections.with_vote_counted(election, now)

        # The voter mark, the ballot and the tally commit together.
        self._store.put_many([
            (HISTORY_NAMESPACE, _history_key(student_id, election_id), record.model_dump(mode="json")),
            (BALLOT_NAMESPACE, secrets.token_hex(8),
             BallotEntry(election_id=election_id, choices=ballot).model_dump(mode="json")),
            (STUDENTS_NAMESPACE, str(voter.id), voter.model_dump(mode="json")),
            (ELECTIONS_NAMESPACE, counted.id, counted.model_dump(mode="json")),
        ])
        self._registry.notify_changed()
        self._elections.notify_changed()

        self._audit.record(
            AuditActionType.VOTE_CAST,
            "Vote cast",
            f"{student.full_name} voted in {election.title}",
            {"election_id": election_id},
        )
        logger.info("Vote recorded for election %s", election_id, extra={"election_id": election_id})
        return CastVoteResult(success=True, message="Vote submitted successfully", token=token)

    def verify_vote_token(self, token) -> Optional[VoteRecord]:
        """Find the vote record a receipt token was issued for. Malformed tokens match nothing."""
        token = normalize_token(token)
        if not is_valid_token_format(token):
            return None
        for row in self._store.list(HISTORY_NAMESPACE):
            if row.get("token") == token:
                return VoteRecord.model_validate(row)
        return None
