"""Memory lifecycle engine: retrieval, strength, review and consolidation."""

from .types import (
    ImportanceLevel,
    Memory,
    MemoryQuery,
    MemorySubType,
    MemoryType,
    OrganizationResult,
    ReviewResult,
    TriggerType,
)
from .store import MemoryStore
from .gate import RetrievalGate
from .scoring import RelevanceScorer
from .strength import calculate_strength
from .retriever import MemoryRetriever
from .reviewer import MemoryReviewer
from .consolidator import ConsolidationEngine
from .scheduler import ConsolidationScheduler
from .manager import MemoryManager

__all__ = [
    "ImportanceLevel",
    "Memory",
    "MemoryQuery",
    "MemorySubType",
    "MemoryType",
    "OrganizationResult",
    "ReviewResult",
    "TriggerType",
    "MemoryStore",
    "RetrievalGate",
    "RelevanceScorer",
    "calculate_strength",
    "MemoryRetriever",
    "MemoryReviewer",
    "ConsolidationEngine",
    "ConsolidationScheduler",
    "MemoryManager",
]
