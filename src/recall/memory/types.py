"""Memory types for the memory lifecycle engine."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import json


def utcnow() -> datetime:
    """Default clock used by every component."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO timestamp, assuming UTC when naive."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class MemoryType(Enum):
    """Types of memory."""

    CORE = "core"  # Standing instructions, always surfaced
    FACTUAL = "factual"  # Project facts, preferences, decisions


class MemorySubType(Enum):
    """Optional finer classification of a memory."""

    # core
    INSTRUCTION = "instruction"
    REFLECTION = "reflection"
    # factual
    PREFERENCE = "preference"
    PROJECT_INFO = "project_info"
    DECISION = "decision"
    SOLUTION = "solution"
    KNOWLEDGE = "knowledge"


class ImportanceLevel(Enum):
    """Coarse importance bucket derived from the importance value."""

    IMPORTANT = "important"
    MODERATE = "moderate"
    UNIMPORTANT = "unimportant"

    @classmethod
    def from_value(cls, importance: float) -> "ImportanceLevel":
        if importance >= 0.7:
            return cls.IMPORTANT
        if importance >= 0.4:
            return cls.MODERATE
        return cls.UNIMPORTANT


MIN_IMPORTANCE = 0.1
MAX_IMPORTANCE = 1.0


def clamp_importance(importance: float) -> float:
    return max(MIN_IMPORTANCE, min(MAX_IMPORTANCE, importance))


def _enum_or_none(enum_cls, value):
    if value is None or value == "":
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return None


@dataclass
class Memory:
    """
    A single remembered fact or instruction.

    Attributes:
        id: Row identifier (None until stored)
        content: Free-text memory body
        keywords: Comma-joined search terms
        context: Provenance snippet
        importance: Importance score (0.1-1.0)
        importance_level: Bucket derived from importance
        memory_type: core or factual
        memory_subtype: Optional finer classification
        is_pinned: Pinned memories are reinforced in strength
        created_at: When memory was created
        last_accessed: When memory was last read or reinforced
        strength: Derived, never persisted
        relevance_score: Derived per query, never persisted
    """

    content: str
    keywords: str = ""
    context: str = ""
    importance: float = 0.5
    importance_level: Optional[ImportanceLevel] = None
    memory_type: MemoryType = MemoryType.FACTUAL
    memory_subtype: Optional[MemorySubType] = None
    is_pinned: bool = False
    created_at: datetime = field(default_factory=utcnow)
    last_accessed: Optional[datetime] = None
    id: Optional[int] = None
    strength: Optional[float] = None
    relevance_score: Optional[float] = None

    def __post_init__(self):
        if self.importance_level is None:
            self.importance_level = ImportanceLevel.from_value(self.importance)

    @property
    def is_core(self) -> bool:
        return self.memory_type == MemoryType.CORE

    def to_dict(self) -> dict:
        """Convert to dictionary for storage."""
        return {
            "id": self.id,
            "content": self.content,
            "keywords": self.keywords,
            "context": self.context,
            "importance": self.importance,
            "importance_level": self.importance_level.value,
            "memory_type": self.memory_type.value,
            "memory_subtype": self.memory_subtype.value if self.memory_subtype else None,
            "is_pinned": 1 if self.is_pinned else 0,
            "created_at": self.created_at.isoformat(),
            "last_accessed": self.last_accessed.isoformat() if self.last_accessed else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Memory":
        """Create from a stored row."""
        importance = data["importance"] if data.get("importance") is not None else 0.5
        return cls(
            id=data["id"],
            content=data["content"],
            keywords=data.get("keywords") or "",
            context=data.get("context") or "",
            importance=importance,
            importance_level=_enum_or_none(ImportanceLevel, data.get("importance_level")),
            memory_type=_enum_or_none(MemoryType, data.get("memory_type")) or MemoryType.FACTUAL,
            memory_subtype=_enum_or_none(MemorySubType, data.get("memory_subtype")),
            is_pinned=bool(data.get("is_pinned")),
            created_at=parse_timestamp(data["created_at"]),
            last_accessed=parse_timestamp(data.get("last_accessed")),
        )

    def to_review_payload(self) -> dict:
        """Compact description sent to the evaluator."""
        payload = {
            "id": self.id,
            "content": self.content,
            "keywords": self.keywords.replace(", ", ","),
            "importance": round(self.importance, 2),
            "importance_level": self.importance_level.value,
            "memory_type": self.memory_type.value,
            "created_at": self.created_at.isoformat(),
            "last_accessed": self.last_accessed.isoformat() if self.last_accessed else None,
        }
        if self.memory_subtype:
            payload["memory_subtype"] = self.memory_subtype.value
        return payload

    def to_organization_payload(self, max_content: int = 200) -> dict:
        """Trimmed description used for conflict analysis."""
        content = self.content
        if len(content) > max_content:
            content = content[:max_content] + "..."
        return {
            "id": self.id,
            "keywords": self.keywords,
            "content": content,
            "created_at": self.created_at.isoformat(),
            "memory_type": self.memory_type.value,
            "memory_subtype": self.memory_subtype.value if self.memory_subtype else None,
            "importance_level": self.importance_level.value,
        }

    def __repr__(self) -> str:
        return f"Memory({self.id}, {self.memory_type.value}, importance={self.importance:.2f})"


@dataclass
class MemoryRelation:
    """Directed edge between two memories."""

    memory_id: int
    related_memory_id: int
    relation_strength: float = 1.0
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class MemoryQuery:
    """Filters for listing and searching memories."""

    text: str = "*"
    memory_type: Optional[MemoryType] = None
    memory_subtype: Optional[MemorySubType] = None
    importance_level: Optional[ImportanceLevel] = None
    limit: int = 10

    @property
    def is_wildcard(self) -> bool:
        return not self.text or self.text == "*"


class ReviewAction(Enum):
    REVIEW = "review"
    FORGET = "forget"
    UNCHANGED = "unchanged"


class ForgetStrategy(Enum):
    DELETE = "delete"
    DOWNGRADE = "downgrade"


class TriggerType(Enum):
    STARTUP = "startup"
    PERIODIC = "periodic"
    MANUAL = "manual"
    AUTO = "auto"


@dataclass
class MemoryEvaluation:
    """One evaluator decision for a memory."""

    memory_id: int
    action: ReviewAction
    forget_strategy: Optional[ForgetStrategy] = None
    reason: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.memory_id,
            "action": self.action.value,
            "forget_strategy": self.forget_strategy.value if self.forget_strategy else None,
            "reason": self.reason,
        }


@dataclass
class ReviewSession:
    """Append-only record of one review run."""

    timestamp: datetime
    reviewed_count: int
    forgotten_count: int
    unchanged_count: int
    details: list[dict] = field(default_factory=list)
    trigger_type: str = TriggerType.AUTO.value
    id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "reviewed_count": self.reviewed_count,
            "forgotten_count": self.forgotten_count,
            "unchanged_count": self.unchanged_count,
            "details": json.dumps(self.details, ensure_ascii=False),
            "trigger_type": self.trigger_type,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReviewSession":
        return cls(
            id=data["id"],
            timestamp=parse_timestamp(data["timestamp"]),
            reviewed_count=data["reviewed_count"],
            forgotten_count=data["forgotten_count"],
            unchanged_count=data["unchanged_count"],
            details=json.loads(data["details"]) if data.get("details") else [],
            trigger_type=data.get("trigger_type") or TriggerType.AUTO.value,
        )


@dataclass
class ReviewResult:
    """Outcome of a review run."""

    reviewed: int = 0
    forgotten: int = 0
    unchanged: int = 0
    details: list[dict] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.reviewed + self.forgotten + self.unchanged


@dataclass
class ConflictGroup:
    """A set of conflicting memories and the one to keep."""

    description: str
    conflicting_ids: list[int]
    keep_id: int
    reason: str = ""


@dataclass
class OrganizationResult:
    """Outcome of a consolidation run."""

    success: bool
    message: str = ""
    conflicts_found: int = 0
    deleted_ids: list[int] = field(default_factory=list)
