from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union

from core.utils import optional_byte_size


class ValidationError(ValueError):
    pass


class PrivacyType(str, Enum):
    PUBLIC = 'public'
    PRIVATE = 'private'
    BOTH = 'both'


class StrikeType(str, Enum):
    STALLED = 'stalled'
    SLOW_SPEED = 'slow_speed'
    SLOW_TIME = 'slow_time'
    DOWNLOADING_METADATA = 'downloading_metadata'


class DeleteReason(str, Enum):
    NONE = 'none'
    STALLED = 'stalled'
    SLOW_SPEED = 'slow_speed'
    SLOW_TIME = 'slow_time'
    DOWNLOADING_METADATA = 'downloading_metadata'
    ALL_FILES_SKIPPED = 'all_files_skipped'
    ALL_FILES_SKIPPED_BY_QBIT = 'all_files_skipped_by_qbit'


class TorrentSnapshot(Protocol):
    """Read-only view of one torrent, identical across download clients."""

    hash: str
    name: str
    is_private: bool
    size: int
    completion_percentage: float
    downloaded_bytes: int
    download_speed: int
    eta: int
    category: Optional[str]
    tags: List[str]
    trackers: List[str]

    def is_downloading(self) -> bool: ...
    def is_stalled(self) -> bool: ...
    def is_seeding(self) -> bool: ...
    def is_completed(self) -> bool: ...
    def is_paused(self) -> bool: ...
    def is_queued(self) -> bool: ...
    def is_checking(self) -> bool: ...
    def is_allocating(self) -> bool: ...
    def is_metadata_downloading(self) -> bool: ...


SNAPSHOT_STATES = (
    'downloading', 'stalled', 'seeding', 'completed', 'paused',
    'queued', 'checking', 'allocating', 'metadata_downloading',
)


@dataclass(frozen=True)
class StaticSnapshot:
    """Snapshot with its state given up front, e.g. from a JSON fixture."""

    hash: str
    name: str = ''
    is_private: bool = False
    size: int = 0
    completion_percentage: float = 0.0
    downloaded_bytes: int = 0
    download_speed: int = 0
    eta: int = 0
    category: Optional[str] = None
    tags: Tuple[str, ...] = ()
    trackers: Tuple[str, ...] = ()
    state: str = 'downloading'

    def is_downloading(self) -> bool:
        return self.state in ('downloading', 'stalled')

    def is_stalled(self) -> bool:
        return self.state == 'stalled'

    def is_seeding(self) -> bool:
        return self.state == 'seeding'

    def is_completed(self) -> bool:
        return self.state in ('seeding', 'completed') or self.completion_percentage >= 100

    def is_paused(self) -> bool:
        return self.state == 'paused'

    def is_queued(self) -> bool:
        return self.state == 'queued'

    def is_checking(self) -> bool:
        return self.state == 'checking'

    def is_allocating(self) -> bool:
        return self.state == 'allocating'

    def is_metadata_downloading(self) -> bool:
        return self.state == 'metadata_downloading'

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StaticSnapshot':
        state = str(data.get('state') or 'downloading').lower()
        if state not in SNAPSHOT_STATES:
            raise ValidationError(f"Unknown snapshot state '{state}'")
        return cls(
            hash=str(data['hash']),
            name=str(data.get('name') or ''),
            is_private=bool(data.get('is_private', False)),
            size=int(data.get('size') or 0),
            completion_percentage=float(data.get('completion_percentage') or 0),
            downloaded_bytes=int(data.get('downloaded_bytes') or 0),
            download_speed=int(data.get('download_speed') or 0),
            eta=int(data.get('eta') or 0),
            category=data.get('category'),
            tags=tuple(str(t) for t in data.get('tags') or ()),
            trackers=tuple(str(t).lower() for t in data.get('trackers') or ()),
            state=state,
        )


@dataclass
class QueueRule:
    name: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    enabled: bool = True
    max_strikes: int = 3
    privacy_type: PrivacyType = PrivacyType.PUBLIC
    min_completion_percentage: float = 0
    max_completion_percentage: float = 100
    reset_strikes_on_progress: bool = True
    delete_private_torrents_from_client: bool = False

    def __post_init__(self) -> None:
        self.privacy_type = PrivacyType(str(getattr(self.privacy_type, 'value', self.privacy_type)).lower())

    def matches_privacy(self, is_private: bool) -> bool:
        if self.privacy_type == PrivacyType.BOTH:
            return True
        if self.privacy_type == PrivacyType.PRIVATE:
            return is_private
        return not is_private

    def matches_completion(self, completion: float) -> bool:
        if self.max_completion_percentage < self.min_completion_percentage:
            return False
        return self.min_completion_percentage <= completion <= self.max_completion_percentage

    def matches(self, snapshot: TorrentSnapshot) -> bool:
        return self.matches_privacy(snapshot.is_private) and self.matches_completion(snapshot.completion_percentage)

    def validate(self) -> None:
        if not str(self.name or '').strip():
            raise ValidationError('Rule name cannot be empty')
        if self.max_strikes < 3:
            raise ValidationError('Max strikes must be at least 3')
        if not 0 <= self.min_completion_percentage <= 100:
            raise ValidationError('Minimum completion percentage must be between 0 and 100')
        if not 0 <= self.max_completion_percentage <= 100:
            raise ValidationError('Maximum completion percentage must be between 0 and 100')
        if self.max_completion_percentage < self.min_completion_percentage:
            raise ValidationError(
                'Maximum completion percentage must be greater than or equal to the minimum completion percentage'
            )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            out[f.name] = value.value if isinstance(value, Enum) else value
        return out


@dataclass
class StallRule(QueueRule):
    minimum_progress: Optional[str] = None
    kind: str = field(default='stall', init=False)

    @property
    def minimum_progress_bytes(self) -> Optional[int]:
        return optional_byte_size(self.minimum_progress)

    def validate(self) -> None:
        super().validate()
        try:
            parsed = self.minimum_progress_bytes
        except ValueError:
            raise ValidationError(f'Invalid minimum progress value: {self.minimum_progress}')
        if parsed is not None and parsed < 0:
            raise ValidationError('Minimum progress must be zero or greater')


@dataclass
class SlowRule(QueueRule):
    min_speed: Optional[str] = None
    max_time_hours: float = 0
    ignore_above_size: Optional[str] = None
    kind: str = field(default='slow', init=False)

    @property
    def min_speed_bytes(self) -> Optional[int]:
        return optional_byte_size(self.min_speed)

    @property
    def ignore_above_size_bytes(self) -> Optional[int]:
        return optional_byte_size(self.ignore_above_size)

    def matches(self, snapshot: TorrentSnapshot) -> bool:
        if not super().matches(snapshot):
            return False
        limit = self.ignore_above_size_bytes
        return limit is None or snapshot.size <= limit

    def validate(self) -> None:
        super().validate()
        if self.max_time_hours < 0:
            raise ValidationError('Maximum time cannot be negative')
        has_min_speed = bool(str(self.min_speed or '').strip())
        if not has_min_speed and not self.max_time_hours > 0:
            raise ValidationError('Either minimum speed or maximum time must be specified')
        try:
            self.min_speed_bytes
        except ValueError:
            raise ValidationError(f'Invalid minimum speed format: {self.min_speed}')
        try:
            self.ignore_above_size_bytes
        except ValueError:
            raise ValidationError(f'Invalid value for slow ignore above size: {self.ignore_above_size}')


Rule = Union[StallRule, SlowRule]

RULE_KINDS = {
    'stall': StallRule,
    'slow': SlowRule,
}


def rule_from_dict(data: Dict[str, Any], kind: Optional[str] = None) -> Rule:
    kind = str(kind or data.get('kind') or '').lower()
    cls = RULE_KINDS.get(kind)
    if cls is None:
        raise ValidationError(f"Unknown rule kind '{kind}'")
    known = {f.name for f in fields(cls) if f.init}
    kwargs = {k: v for k, v in data.items() if k in known}
    if 'name' not in kwargs:
        raise ValidationError('Rule name cannot be empty')
    return cls(**kwargs)


@dataclass(frozen=True)
class RuleSet:
    stall_rules: Tuple[StallRule, ...] = ()
    slow_rules: Tuple[SlowRule, ...] = ()


@dataclass
class DecisionResult:
    found: bool = False
    should_remove: bool = False
    delete_reason: DeleteReason = DeleteReason.NONE
    is_private: bool = False
    delete_from_client: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'found': self.found,
            'should_remove': self.should_remove,
            'delete_reason': self.delete_reason.value,
            'is_private': self.is_private,
            'delete_from_client': self.delete_from_client,
        }


@dataclass(frozen=True)
class RuleInterval:
    rule_id: str
    rule_name: str
    privacy_type: PrivacyType
    start: float
    end: float


@dataclass(frozen=True)
class IntervalOverlap:
    rule_name: str
    conflicting_rule_name: str
    privacy_type: PrivacyType
    start: float
    end: float


@dataclass(frozen=True)
class IntervalGap:
    privacy_type: PrivacyType
    start: float
    end: float

    def to_dict(self) -> Dict[str, Any]:
        return {'privacy_type': self.privacy_type.value, 'start': self.start, 'end': self.end}


@dataclass
class ValidationResult:
    is_valid: bool = True
    details: List[str] = field(default_factory=list)
    error_message: Optional[str] = None
    overlaps: List[IntervalOverlap] = field(default_factory=list)
