"""Student roster and voting-rights lifecycle."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from .events import Subscribers
from .models import (
    AddStudentResult,
    ClassroomStats,
    ImportResult,
    NewStudent,
    StudentImportRow,
    StudentLoginResult,
    StudentRecord,
    StudentStats,
    normalize_keys,
    sanitize_input,
    utcnow,
)
from .persistence import RecordStore

logger = logging.getLogger(__name__)

NAMESPACE = "students"
DEFAULT_APPROVER = "Admin"

REQUIRED_IMPORT_FIELDS = ("id", "name", "surname", "classroom", "national_id")
# Fields an overwriting import may replace. Voting-rights fields are kept.
ROSTER_FIELDS = {"class_number", "name", "surname", "classroom", "national_id"}
PROTECTED_FIELDS = {"id", "created_at"}

StudentListener = Callable[[List[StudentRecord]], None]


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


class StudentRegistry:
    """Owns the roster. Every mutation is persisted, then subscribers get the new roster."""

    def __init__(self, store: RecordStore) -> None:
        self._store = store
        self._subscribers: Subscribers[List[StudentRecord]] = Subscribers("students")

    def subscribe(self, listener: StudentListener) -> Callable[[], None]:
        return self._subscribers.subscribe(listener)

    # Storage helpers

    def _load(self) -> List[StudentRecord]:
        return [StudentRecord.model_validate(row) for row in self._store.list(NAMESPACE)]

    def _save(self, student: StudentRecord) -> None:
        self._store.put(NAMESPACE, str(student.id), student.model_dump(mode="json"))

    def _save_all(self, students: Iterable[StudentRecord]) -> None:
        self._store.replace_all(
            NAMESPACE,
            [(str(s.id), s.model_dump(mode="json")) for s in students]
        )

    def notify_changed(self) -> None:
        self._subscribers.notify(self.get_all_students())

    # Queries

    def get_all_students(self) -> List[StudentRecord]:
        return self._load()

    def get_student(self, student_id: int) -> Optional[StudentRecord]:
        row = self._store.get(NAMESPACE, str(student_id))
        return StudentRecord.model_validate(row) if row else None

    def get_students_by_classroom(self, classroom: str) -> List[StudentRecord]:
        return [s for s in self._load() if s.classroom == classroom]

    def get_students_by_voting_status(self, approved: bool) -> List[StudentRecord]:
        return [s for s in self._load() if s.voting_approved == approved]

    def get_unique_classrooms(self) -> List[str]:
        return sorted({s.classroom for s in self._load()})

    def get_student_stats(self) -> StudentStats:
        students = self._load()
        by_classroom: Dict[str, ClassroomStats] = {}
        approved = 0
        for student in students:
            stats = by_classroom.setdefault(student.classroom, ClassroomStats())
            stats.total += 1
            if student.voting_approved:
                approved += 1
                stats.approved += 1
        return StudentStats(
            total=len(students),
            approved=approved,
            pending=len(students) - approved,
            by_classroom=by_classroom,
        )

    # CRUD

    def add_student(self, data: Union[NewStudent, Mapping[str, Any]]) -> AddStudentResult:
        """Add a student. Duplicate ``id`` or ``national_id`` is refused and nothing is written."""
        if not isinstance(data, NewStudent):
            try:
                data = NewStudent.model_validate(normalize_keys(NewStudent, data))
            except ValidationError as exc:
                return AddStudentResult(success=False, error=f"Invalid student data: {exc.error_count()} invalid field(s)")

        students = self._load()
        if any(s.id == data.id for s in students):
            logger.warning("Refused duplicate student id %s", data.id, extra={"student_id": data.id})
            return AddStudentResult(success=False, error="Student ID already exists")
        if any(s.national_id == data.national_id for s in students):
            logger.warning("Refused duplicate national id for student %s", data.id, extra={"student_id": data.id})
            return AddStudentResult(success=False, error="National ID already exists")

        now = utcnow()
        student = StudentRecord(**data.model_dump(), created_at=now, updated_at=now)
        self._save(student)
        logger.info("Added student %s to %s", student.id, student.classroom, extra={"student_id": student.id})
        self.notify_changed()
        return AddStudentResult(success=True, student=student)

    def edit_student(self, student_id: int, changes: Mapping[str, Any]) -> AddStudentResult:
        """Apply ``changes`` to a student. A national id held by another student is refused."""
        current = self.get_student(student_id)
        if current is None:
            return AddStudentResult(success=False, error="Student not found")

        updates = {
            key: value
            for key, value in normalize_keys(StudentRecord, changes).items()
            if key not in PROTECTED_FIELDS
        }
        merged = {**current.model_dump(), **updates, "updated_at": utcnow()}
        updated = StudentRecord.model_validate(merged)

        if updated.national_id != current.national_id and any(
            s.national_id == updated.national_id for s in self._load() if s.id != student_id
        ):
            logger.warning("Refused duplicate national id for student %s", student_id,
                           extra={"student_id": student_id})
            return AddStudentResult(success=False, error="National ID already exists")

        self._save(updated)
        logger.info("Updated student %s", student_id, extra={"student_id": student_id, "fields": sorted(updates)})
        self.notify_changed()
        return AddStudentResult(success=True, student=updated)

    def update_student(self, student_id: int, changes: Mapping[str, Any]) -> Optional[StudentRecord]:
        """Like ``edit_student`` but returns the record, or None if unknown or refused."""
        result = self.edit_student(student_id, changes)
        return result.student if result.success else None

    def delete_student(self, student_id: int) -> bool:
        removed = self._store.delete(NAMESPACE, str(student_id))
        if removed:
            logger.info("Deleted student %s", student_id, extra={"student_id": student_id})
            self.notify_changed()
        return removed

    def authenticate_student(self, student_id: Any, national_id: Any) -> StudentLoginResult:
        """Check a student id and national id pair. Only approved students may sign in."""
        raw_id = sanitize_input(str(student_id or ""))
        raw_national_id = sanitize_input(str(national_id or ""))
        if not raw_id or not raw_national_id:
            return StudentLoginResult(success=False, message="Student ID and national ID are required")

        student = self.get_student(int(raw_id)) if raw_id.isdigit() else None
        if student is None or not secrets.compare_digest(
                student.national_id.encode(), raw_national_id.encode()
        ):
            logger.warning("Failed student sign-in for id %s", raw_id)
            return StudentLoginResult(success=False, message="Student not found or national ID does not match")
        if not student.voting_approved:
            return StudentLoginResult(success=False, message="Voting right has not been approved")

        student = student.model_copy(update={"last_active": utcnow()})
        self._save(student)
        logger.info("Student %s signed in", student.id, extra={"student_id": student.id})
        return StudentLoginResult(success=True, student=student)

    # Voting rights

    def approve_voting_right(self, student_id: int, approved_by: str = DEFAULT_APPROVER) -> Optional[StudentRecord]:
        return self.update_student(student_id, {
            "voting_approved": True,
            "voting_approved_at": utcnow(),
            "voting_approved_by": approved_by,
        })

    def revoke_voting_right(self, student_id: int) -> Optional[StudentRecord]:
        """Revoke and clear the approval stamp; a later approval stamps afresh."""
        return self.update_student(student_id, {
            "voting_approved": False,
            "voting_approved_at": None,
            "voting_approved_by": None,
        })

    def bulk_approve_voting_rights(self, classroom: str, approved_by: str = DEFAULT_APPROVER) -> int:
        """Approve every pending student in ``classroom``. Returns how many changed."""
        now = utcnow()
        return self._bulk_update(
            classroom,
            lambda s: not s.voting_approved,
            {
                "voting_approved": True,
                "voting_approved_at": now,
                "voting_approved_by": approved_by,
                "updated_at": now,
            },
        )

    def bulk_revoke_voting_rights(self, classroom: str) -> int:
        now = utcnow()
        return self._bulk_update(
            classroom,
            lambda s: s.voting_approved,
            {
                "voting_approved": False,
                "voting_approved_at": None,
                "voting_approved_by": None,
                "updated_at": now,
            },
        )

    def _bulk_update(self, classroom: str, needs_change: Callable[[StudentRecord], bool], update: Dict[str, Any]) -> int:
        students = self._load()
        count = 0
        for index, student in enumerate(students):
            if student.classroom == classroom and needs_change(student):
                students[index] = student.model_copy(update=update)
                count += 1
        if count:
            self._save_all(students)
            logger.info("Bulk voting-rights change in %s affected %d student(s)", classroom, count,
                        extra={"classroom": classroom})
            self.notify_changed()
        return count

    @staticmethod
    def with_vote_recorded(student: StudentRecord, election_id: str,
                           now: Optional[datetime] = None) -> StudentRecord:
        now = now or utcnow()
        return student.model_copy(update={
            "voted_in": student.voted_in | {str(election_id)},
            "last_active": now,
            "updated_at": now,
        })

    def record_vote(self, student_id: int, election_id: str) -> Optional[StudentRecord]:
        student = self.get_student(student_id)
        if student is None:
            return None
        updated = self.with_vote_recorded(student, election_id)
        self._save(updated)
        self.notify_changed()
        return updated

    # Import

    def import_students(self, rows: Iterable[Mapping[str, Any]], overwrite: bool = False) -> ImportResult:
        """Import a batch of roster rows.

        Rows missing a required field, failing validation, or clashing with an
        existing national id are skipped with a reason. Rows whose id already
        exists are skipped unless ``overwrite`` is set, in which case the roster
        fields are replaced and the voting-rights fields are kept. The batch is
        written in one atomic replace.
        """
        students = self._load()
        index_by_id = {s.id: i for i, s in enumerate(students)}
        owner_by_national_id = {s.national_id: s.id for s in students}
        result = ImportResult()
        now = utcnow()

        for raw in rows:
            row = normalize_keys(StudentImportRow, raw) if isinstance(raw, Mapping) else {}
            missing = [field for field in REQUIRED_IMPORT_FIELDS if _is_blank(row.get(field))]
            if missing:
                result.errors.append(
                    f"Incomplete data for ID: {row.get('id') or 'unknown'} (missing {', '.join(missing)})"
                )
                result.skipped += 1
                continue

            try:
                parsed = StudentImportRow.model_validate(row)
            except ValidationError as exc:
                result.errors.append(f"Invalid data for ID: {row.get('id')} ({exc.error_count()} invalid field(s))")
                result.skipped += 1
                continue

            owner = owner_by_national_id.get(parsed.national_id)

            if parsed.id in index_by_id:
                if not overwrite:
                    result.errors.append(f"Student ID {parsed.id} already exists")
                    result.skipped += 1
                    continue
                if owner is not None and owner != parsed.id:
                    result.errors.append(f'Duplicate national ID for "{parsed.name} {parsed.surname}"')
                    result.skipped += 1
                    continue
                index = index_by_id[parsed.id]
                existing = students[index]
                owner_by_national_id.pop(existing.national_id, None)
                students[index] = existing.model_copy(update={
                    **parsed.model_dump(include=ROSTER_FIELDS),
                    "updated_at": now,
                })
                owner_by_national_id[parsed.national_id] = parsed.id
                result.imported += 1
                continue

            if owner is not None:
                result.errors.append(f'Duplicate national ID for "{parsed.name} {parsed.surname}"')
                result.skipped += 1
                continue

            index_by_id[parsed.id] = len(students)
            owner_by_national_id[parsed.national_id] = parsed.id
            students.append(StudentRecord(**parsed.model_dump(), created_at=now, updated_at=now))
            result.imported += 1

        if result.imported:
            self._save_all(students)
            self.notify_changed()
        logger.info("Imported %d student(s), skipped %d", result.imported, result.skipped,
                    extra={"overwrite": overwrite})
        return result

    def reset_student_data(self) -> None:
        """Remove the whole roster. Irreversible."""
        removed = self._store.clear(NAMESPACE)
        logger.warning("Student roster reset (%d record(s) removed)", removed)
        self.notify_changed()
