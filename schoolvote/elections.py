"""Election lifecycle and the public result visibility gate."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Callable, List, Mapping, Optional, Union

from .events import Subscribers
from .models import (
    Election,
    ElectionStatus,
    ElectionType,
    NewElection,
    Position,
    VisibilityDecision,
    VisibilityReason,
    ensure_utc,
    normalize_keys,
    utcnow,
)
from .persistence import RecordStore

logger = logging.getLogger(__name__)

NAMESPACE = "elections"
OPEN_EXTENSION = timedelta(hours=24)

STUDENT_COMMITTEE_POSITIONS = [
    ("president", "President"),
    ("vice-president", "Vice President"),
    ("secretary", "Secretary"),
    ("treasurer", "Treasurer"),
    ("public-relations", "Public Relations"),
    ("music-president", "Head of Music"),
    ("sports-president", "Head of Sports"),
    ("cheer-president", "Head of Cheer"),
    ("discipline-president", "Head of Discipline"),
]

ElectionListener = Callable[[List[Election]], None]


def generate_id() -> str:
    """Millisecond timestamp plus a random suffix."""
    return f"{int(utcnow().timestamp() * 1000)}-{secrets.token_hex(4)}"


def _resolve_now(now: Optional[datetime]) -> datetime:
    return ensure_utc(now) if now is not None else utcnow()


def get_default_positions(election_type: ElectionType) -> List[Position]:
    if election_type == ElectionType.STUDENT_COMMITTEE:
        return [Position(id=pid, title=title) for pid, title in STUDENT_COMMITTEE_POSITIONS]
    return []


def calculate_election_status(start: datetime, end: datetime, now: Optional[datetime] = None) -> ElectionStatus:
    now = _resolve_now(now)
    if now < ensure_utc(start):
        return ElectionStatus.DRAFT
    if now <= ensure_utc(end):
        return ElectionStatus.OPEN
    return ElectionStatus.CLOSED


def check_results_visibility(election: Optional[Election], settings: Any,
                             now: Optional[datetime] = None) -> VisibilityDecision:
    """
    Decide whether an election's results may be shown publicly.

    Results are visible only after the election has ended and its display
    settings have been published. Missing settings count as unpublished.
    """
    if election is None:
        return VisibilityDecision(allowed=False, reason=VisibilityReason.ELECTION_NOT_FOUND)
    now = _resolve_now(now)
    if election.end_date > now:
        return VisibilityDecision(allowed=False, reason=VisibilityReason.ELECTION_ACTIVE)
    if settings is None or not settings.is_published:
        return VisibilityDecision(allowed=False, reason=VisibilityReason.NOT_PUBLISHED)
    return VisibilityDecision(allowed=True, reason=VisibilityReason.PUBLISHED)


class ElectionLifecycle:
    """Elections keyed by id. Status is always derived from the dates on read."""

    def __init__(self, store: RecordStore) -> None:
        self._store = store
        self._subscribers: Subscribers[List[Election]] = Subscribers("elections")

    def subscribe(self, listener: ElectionListener) -> Callable[[], None]:
        return self._subscribers.subscribe(listener)

    def _with_status(self, election: Election, now: Optional[datetime] = None) -> Election:
        status = calculate_election_status(election.start_date, election.end_date, now)
        if status == election.status:
            return election
        return election.model_copy(update={"status": status})

    def notify_changed(self) -> None:
        self._subscribers.notify(self.get_all_elections())

    def _save(self, election: Election) -> Election:
        self._store.put(NAMESPACE, election.id, election.model_dump(mode="json"))
        self.notify_changed()
        return election

    def get_all_elections(self, now: Optional[datetime] = None) -> List[Election]:
        return [self._with_status(Election.model_validate(row), now) for row in self._store.list(NAMESPACE)]

    def get_election(self, election_id: str, now: Optional[datetime] = None) -> Optional[Election]:
        row = self._store.get(NAMESPACE, str(election_id))
        return self._with_status(Election.model_validate(row), now) if row else None

    def create_election(self, data: Union[NewElection, Mapping[str, Any]]) -> Election:
        if not isinstance(data, NewElection):
            data = NewElection.model_validate(normalize_keys(NewElection, data))
        now = utcnow()
        election = Election(
            id=generate_id(),
            title=data.title,
            description=data.description,
            type=data.type,
            status=calculate_election_status(data.start_date, data.end_date, now),
            start_date=data.start_date,
            end_date=data.end_date,
            positions=get_default_positions(data.type),
            created_at=now,
            updated_at=now,
        )
        logger.info("Created election %s", election.id, extra={"election_id": election.id})
        return self._save(election)

    def update_election(self, election_id: str, changes: Mapping[str, Any]) -> Optional[Election]:
        current = self.get_election(election_id)
        if current is None:
            return None
        updates = normalize_keys(Election, changes)
        for field in ("id", "created_at", "status"):
            updates.pop(field, None)
        merged = Election.model_validate({**current.model_dump(), **updates, "updated_at": utcnow()})
        return self._save(self._with_status(merged))

    def delete_election(self, election_id: str) -> bool:
        removed = self._store.delete(NAMESPACE, str(election_id))
        if removed:
            logger.info("Deleted election %s", election_id, extra={"election_id": str(election_id)})
            self.notify_changed()
        return removed

    def open_election(self, election_id: str, now: Optional[datetime] = None) -> Optional[Election]:
        """Start now. An end date already behind us is pushed a day ahead."""
        now = _resolve_now(now)
        election = self.get_election(election_id)
        if election is None:
            return None
        changes = {"start_date": now}
        if election.end_date <= now:
            changes["end_date"] = now + OPEN_EXTENSION
        logger.info("Opening election %s", election_id, extra={"election_id": str(election_id)})
        return self._update_at(election, changes, now)

    def close_election(self, election_id: str, now: Optional[datetime] = None) -> Optional[Election]:
        now = _resolve_now(now)
        election = self.get_election(election_id)
        if election is None:
            return None
        logger.info("Closing election %s", election_id, extra={"election_id": str(election_id)})
        return self._update_at(election, {"end_date": now}, now)

    def _update_at(self, election: Election, changes: Mapping[str, Any], now: datetime) -> Election:
        updated = election.model_copy(update={**changes, "updated_at": now})
        return self._save(self._with_status(updated, now))

    def is_election_locked(self, election_id: str, now: Optional[datetime] = None) -> bool:
        """Locked elections (open or closed) may no longer change their positions."""
        election = self.get_election(election_id, now)
        if election is None:
            return False
        return election.status in (ElectionStatus.OPEN, ElectionStatus.CLOSED)

    def is_election_ended(self, election_id: str, now: Optional[datetime] = None) -> bool:
        election = self.get_election(election_id)
        if election is None:
            return False
        return election.end_date <= _resolve_now(now)

    # Positions

    def _editable(self, election_id: str, now: Optional[datetime]) -> Optional[Election]:
        election = self.get_election(election_id, now)
        if election is None:
            return None
        if election.status in (ElectionStatus.OPEN, ElectionStatus.CLOSED):
            logger.warning("Refused position change on %s election %s", election.status.value, election_id,
                           extra={"election_id": str(election_id)})
            return None
        return election

    def add_position(self, election_id: str, title: str, now: Optional[datetime] = None) -> Optional[Election]:
        """Append a custom position. Returns None for unknown or locked elections."""
        election = self._editable(election_id, now)
        if election is None:
            return None
        position = Position(id=generate_id(), title=title.strip(), is_custom=True)
        return self.update_election(election_id, {"positions": election.positions + [position]})

    def toggle_position(self, election_id: str, position_id: str,
                        now: Optional[datetime] = None) -> Optional[Election]:
        election = self._editable(election_id, now)
        if election is None:
            return None
        positions = [
            p.model_copy(update={"enabled": not p.enabled}) if p.id == position_id else p
            for p in election.positions
        ]
        return self.update_election(election_id, {"positions": positions})

    def get_enabled_position_ids(self, election_id: str) -> List[str]:
        election = self.get_election(election_id)
        if election is None:
            return []
        return [p.id for p in election.positions if p.enabled]

    @staticmethod
    def with_vote_counted(election: Election, now: Optional[datetime] = None) -> Election:
        return election.model_copy(update={
            "total_votes": election.total_votes + 1,
            "updated_at": now or utcnow(),
        })

    def increment_total_votes(self, election_id: str) -> Optional[Election]:
        election = self.get_election(election_id)
        if election is None:
            return None
        return self._save(self.with_vote_counted(election))

    def results_visibility(self, election_id: str, display_store, now: Optional[datetime] = None) -> VisibilityDecision:
        election = self.get_election(election_id, now)
        settings = display_store.get_display_settings(election_id) if election is not None else None
        decision = check_results_visibility(election, settings, now)
        logger.debug("Results visibility for %s: %s", election_id, decision.reason.value,
                     extra={"election_id": str(election_id)})
        return decision
