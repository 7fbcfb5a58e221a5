# core/models.py

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict


class MediaKind(str, Enum):
    """Declared kind of an inbound event"""
    IMAGE = "image"
    VIDEO = "video"
    BINARY = "exact-binary"
    TEXT = "text"

    @classmethod
    def parse(cls, value) -> Optional['MediaKind']:
        """Return the matching kind, or None for anything unrecognised"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return None


class FingerprintKind(str, Enum):
    """Decides which comparator applies to a fingerprint"""
    PERCEPTUAL = "perceptual"
    EXACT = "exact"


class Outcome(str, Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    TEXT = "text"
    IGNORED = "ignored"
    FAILED = "failed"
    REACTION = "reaction"


def utc(value: Optional[datetime] = None) -> datetime:
    """Normalise to an aware UTC datetime; naive values are taken as UTC"""
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_epoch(value: datetime) -> float:
    return utc(value).timestamp()


def from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


@dataclass(frozen=True)
class Fingerprint:
    """Comparable content fingerprint (hex encoded)"""
    value: str
    kind: FingerprintKind

    @property
    def bits(self) -> int:
        return len(self.value) * 4

    def __str__(self):
        return self.value


@dataclass(frozen=True)
class Poster:
    id: int
    display_name: Optional[str] = None


@dataclass(frozen=True)
class Origin:
    conversation_id: str
    message_id: str


@dataclass(frozen=True)
class FingerprintRecord:
    """One stored media item; created once per accepted post"""
    fingerprint: Fingerprint
    media_kind: MediaKind
    poster: Poster
    origin: Origin
    posted_at: datetime
    id: Optional[int] = None


@dataclass(frozen=True)
class DuplicateEvent:
    offender: Poster
    timestamp: datetime
    original_id: Optional[int] = None
    media_kind: Optional[MediaKind] = None
    distance: Optional[int] = None
    conversation_id: Optional[str] = None


@dataclass
class UserStats:
    """Materialized per-user counters"""
    user_id: int
    display_name: Optional[str] = None
    image_count: int = 0
    video_count: int = 0
    binary_count: int = 0
    text_count: int = 0
    duplicates_posted: int = 0
    total_messages: int = 0
    first_seen: Optional[datetime] = None
    last_active: Optional[datetime] = None


@dataclass(frozen=True)
class TextMessageRecord:
    author: Poster
    origin: Origin
    timestamp: datetime


@dataclass
class InboundEvent:
    """Event handed over by the platform adapter"""
    media_kind: str
    author: Poster
    conversation_id: str
    source_message_id: str
    timestamp: datetime = field(default_factory=utc)
    buffer: Optional[bytes] = None
    mime_type: Optional[str] = None

    @property
    def origin(self) -> Origin:
        return Origin(str(self.conversation_id), str(self.source_message_id))


@dataclass(frozen=True)
class DuplicateNotification:
    """Structured payload the transport layer turns into a reply"""
    media_kind: str
    original_author: Poster
    original_timestamp: datetime
    original_message_link: str
    distance: int = 0

    def to_dict(self) -> Dict:
        return {
            'media_kind': self.media_kind,
            'original_author': asdict(self.original_author),
            'original_timestamp': self.original_timestamp.isoformat(),
            'original_message_link': self.original_message_link,
            'distance': self.distance
        }


@dataclass
class Decision:
    outcome: Outcome
    fingerprint: Optional[Fingerprint] = None
    record: Optional[FingerprintRecord] = None
    notification: Optional[DuplicateNotification] = None
    error: Optional[str] = None

    @property
    def is_duplicate(self) -> bool:
        return self.outcome is Outcome.DUPLICATE

    def to_dict(self) -> Dict:
        data = {'outcome': self.outcome.value}
        if self.fingerprint is not None:
            data['fingerprint'] = self.fingerprint.value
            data['fingerprint_kind'] = self.fingerprint.kind.value
        if self.notification is not None:
            data['duplicate'] = self.notification.to_dict()
        if self.error:
            data['error'] = self.error
        return data


@dataclass(frozen=True)
class ContributorStats:
    user_id: int
    display_name: Optional[str]
    total_messages: int
    breakdown: Dict[str, int]


@dataclass(frozen=True)
class OffenderStats:
    user_id: int
    display_name: Optional[str]
    count: int


@dataclass(frozen=True)
class EngagementStats:
    user_id: int
    display_name: Optional[str]
    total_reactions: int


@dataclass
class WeeklyReport:
    window_start: datetime
    window_end: datetime
    top_contributors: List[ContributorStats]
    media_breakdown: Dict[str, int]
    top_offenders: List[OffenderStats]
    top_engagement: Optional[EngagementStats] = None

    def to_dict(self) -> Dict:
        return {
            'window_start': self.window_start.isoformat(),
            'window_end': self.window_end.isoformat(),
            'top_contributors': [asdict(c) for c in self.top_contributors],
            'media_breakdown': dict(self.media_breakdown),
            'top_offenders': [asdict(o) for o in self.top_offenders],
            'top_engagement': asdict(self.top_engagement) if self.top_engagement else None
        }
