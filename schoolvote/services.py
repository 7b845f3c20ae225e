"""Wires the stores together over one record store."""

from dataclasses import dataclass
from typing import Optional

from .admins import AdminDirectory
from .audit import AuditTrail
from .ballots import BallotBox
from .config import Settings
from .display_settings import DisplaySettingsStore
from .elections import ElectionLifecycle
from .persistence import RecordStore, build_record_store
from .students import StudentRegistry


@dataclass
class Services:
    settings: Settings
    store: RecordStore
    students: StudentRegistry
    display_settings: DisplaySettingsStore
    elections: ElectionLifecycle
    admins: AdminDirectory
    audit: AuditTrail
    ballots: BallotBox


def build_services(settings: Settings, store: Optional[RecordStore] = None) -> Services:
    store = store or build_record_store(settings)
    students = StudentRegistry(store)
    elections = ElectionLifecycle(store)
    audit = AuditTrail(store, settings.max_activities)
    return Services(
        settings=settings,
        store=store,
        students=students,
        display_settings=DisplaySettingsStore(store),
        elections=elections,
        admins=AdminDirectory(store),
        audit=audit,
        ballots=BallotBox(store, students, elections, audit),
    )
