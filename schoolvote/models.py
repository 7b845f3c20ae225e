"""Data model shared by the roster, election and display-settings stores."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, List, Mapping, Optional, Set

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


def sanitize_input(text: str) -> str:
    """Trim whitespace and strip ASCII control characters."""
    return _CONTROL_CHARS.sub("", text.strip())


class CamelModel(BaseModel):
    """Stored with snake_case keys; accepts camelCase keys on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Access levels

class AccessLevel(IntEnum):
    ROOT = 0
    SYSTEM_ADMIN = 1
    TEACHER = 2
    OBSERVER = 3


ACCESS_LEVEL_LABELS = {
    AccessLevel.ROOT: "Root Admin",
    AccessLevel.SYSTEM_ADMIN: "System Admin",
    AccessLevel.TEACHER: "Homeroom Teacher",
    AccessLevel.OBSERVER: "Observer",
}


def coerce_access_level(value: Any) -> Optional[AccessLevel]:
    """Map a loosely typed role value to an AccessLevel, or None if unrecognized."""
    if isinstance(value, AccessLevel):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        try:
            return AccessLevel(value)
        except ValueError:
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return coerce_access_level(int(text))
        return AccessLevel.__members__.get(text.upper())
    return None


def access_level_label(value: Any) -> str:
    level = coerce_access_level(value)
    if level is None:
        return "Unknown"
    return ACCESS_LEVEL_LABELS[level]


class AdminAccount(CamelModel):
    id: int
    username: str
    display_name: Optional[str] = None
    access_level: AccessLevel
    created_at: datetime = Field(default_factory=utcnow)


class SessionIdentity(BaseModel):
    """Who is asking. ``role`` is kept raw; it may come from an untyped session layer."""

    identity: str
    role: Any = None

    @property
    def access_level(self) -> Optional[AccessLevel]:
        return coerce_access_level(self.role)


# Students

class NewStudent(CamelModel):
    id: int
    class_number: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("class_number", "classNumber", "no")
    )
    name: str
    surname: str
    classroom: str
    national_id: str

    @field_validator('name', 'surname', 'classroom', 'national_id', mode='before')
    @classmethod
    def strip_text(cls, v):
        if isinstance(v, (int, str)):
            return sanitize_input(str(v))
        return v


class StudentImportRow(NewStudent):
    """One row of a roster import. Required-field checks happen before validation."""


class StudentRecord(CamelModel):
    id: int
    class_number: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("class_number", "classNumber", "no")
    )
    name: str
    surname: str
    classroom: str
    national_id: str

    voting_approved: bool = False
    voting_approved_at: Optional[datetime] = None
    voting_approved_by: Optional[str] = None

    last_active: Optional[datetime] = None
    voted_in: Set[str] = Field(default_factory=set)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.name} {self.surname}"


class AddStudentResult(BaseModel):
    success: bool
    error: Optional[str] = None
    student: Optional[StudentRecord] = None


class StudentLoginResult(BaseModel):
    success: bool
    message: Optional[str] = None
    student: Optional[StudentRecord] = None


class ImportResult(BaseModel):
    imported: int = 0
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)


class ClassroomStats(BaseModel):
    total: int = 0
    approved: int = 0


class StudentStats(BaseModel):
    total: int
    approved: int
    pending: int
    by_classroom: Dict[str, ClassroomStats]


# Display settings

class PositionDisplayConfig(CamelModel):
    position_id: str
    show_raw_score: bool = True
    show_winner_only: bool = False
    skip: bool = False


class DisplaySettings(CamelModel):
    election_id: str
    is_published: bool = False
    published_at: Optional[datetime] = None
    global_show_raw_score: bool = True
    global_show_winner_only: bool = False
    position_configs: List[PositionDisplayConfig] = Field(default_factory=list)

    def position_config(self, position_id: str) -> Optional[PositionDisplayConfig]:
        for config in self.position_configs:
            if config.position_id == position_id:
                return config
        return None


# Elections

class ElectionType(str, Enum):
    STUDENT_COMMITTEE = "student-committee"
    CUSTOM = "custom"


class ElectionStatus(str, Enum):
    DRAFT = "draft"
    OPEN = "open"
    CLOSED = "closed"


class Position(CamelModel):
    id: str
    title: str
    enabled: bool = True
    is_custom: bool = False


class NewElection(CamelModel):
    title: str
    description: str = ""
    type: ElectionType = ElectionType.CUSTOM
    start_date: datetime
    end_date: datetime

    @field_validator('start_date', 'end_date')
    @classmethod
    def as_utc(cls, v):
        return ensure_utc(v)

    @field_validator('end_date')
    @classmethod
    def end_after_start(cls, v, info):
        start = info.data.get('start_date')
        if start is not None and v <= start:
            raise ValueError('End date must be after start date')
        return v


class Election(CamelModel):
    id: str
    title: str
    description: str = ""
    type: ElectionType = ElectionType.CUSTOM
    status: ElectionStatus = ElectionStatus.DRAFT
    start_date: datetime
    end_date: datetime
    positions: List[Position] = Field(default_factory=list)
    total_votes: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator('start_date', 'end_date')
    @classmethod
    def as_utc(cls, v):
        return ensure_utc(v)


class VisibilityReason(str, Enum):
    ELECTION_NOT_FOUND = "election_not_found"
    ELECTION_ACTIVE = "election_active"
    NOT_PUBLISHED = "not_published"
    PUBLISHED = "published"


class VisibilityDecision(BaseModel):
    allowed: bool
    reason: VisibilityReason


# Ballots

ABSTAIN = "abstain"


class VoteRecord(CamelModel):
    """Who voted where. Carries no choices."""

    election_id: str
    student_id: int
    token: str
    cast_at: datetime = Field(default_factory=utcnow)


class BallotEntry(CamelModel):
    """Anonymous choices for one ballot, keyed by position id."""

    election_id: str
    choices: Dict[str, str]


class CastVoteResult(BaseModel):
    success: bool
    message: str
    token: Optional[str] = None


def normalize_keys(model_cls: type, data: Mapping[str, Any]) -> Dict[str, Any]:
    """Rewrite camelCase or aliased keys of ``data`` to ``model_cls`` field names."""
    lookup: Dict[str, str] = {}
    for name, field in model_cls.model_fields.items():
        lookup[name] = name
        if field.alias:
            lookup[field.alias] = name
        if isinstance(field.validation_alias, AliasChoices):
            for choice in field.validation_alias.choices:
                if isinstance(choice, str):
                    lookup[choice] = name
        elif isinstance(field.validation_alias, str):
            lookup[field.validation_alias] = name
    return {lookup.get(key, key): value for key, value in data.items()}
