"""
Batch job contracts.

Every eligibility source implements EligibilitySource; every batch job
(discovery, aging, conversion sweep, backfills) returns a JobResult. The job
manager only sees these uniform shapes.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Iterable, Type

from leadqueue.models.enums import Category


@dataclass
class EligibleLead:
    """One person the source says belongs in a category right now."""
    person_id: int
    category: Category
    reason: str = ''
    pending_count: int = 0


@dataclass
class EligibilityPage:
    """A page of eligible people, ascending by person_id."""
    items: List[EligibleLead]
    next_cursor: Optional[int] = None   # None = no more pages


@dataclass
class PersonStatus:
    """Point-in-time eligibility facts for one person."""
    person_id: int
    enabled: bool = True
    has_signature: bool = False
    pending_count: int = 0
    has_open_claim: bool = False

    @property
    def category(self) -> Optional[Category]:
        """Unsigned wins over outstanding requirements; None = not eligible."""
        if not self.enabled:
            return None
        if not self.has_signature and self.has_open_claim:
            return Category.UNSIGNED
        if self.has_signature and self.pending_count > 0:
            return Category.OUTSTANDING_REQUIREMENTS
        return None


@dataclass
class JobResult:
    """Uniform output from every batch job."""
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)
    can_resume: bool = False
    next_offset: Optional[int] = None

    def bump(self, key: str, amount: int = 1):
        self.stats[key] = self.stats.get(key, 0) + amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            'processed': self.processed,
            'failed': self.failed,
            'skipped': self.skipped,
            'errors': self.errors[-20:],
            'stats': dict(self.stats),
            'can_resume': self.can_resume,
            'next_offset': self.next_offset,
        }


class EligibilitySource(ABC):
    """
    Read-only view into the external system of record.

    Implementations must never write. Results may lag the real system;
    callers treat them as eventually consistent.
    """
    name: str = ''
    description: str = ''

    @abstractmethod
    def list_eligible(self, category: Category, cursor: Optional[int], limit: int) -> EligibilityPage:
        """
        Return up to `limit` people eligible for `category` with
        person_id > cursor, ascending by person_id.
        """
        ...

    @abstractmethod
    def check_people(self, person_ids: Iterable[int]) -> Dict[int, PersonStatus]:
        """
        Return current facts for each requested person. People unknown to the
        source are reported as disabled (not eligible anywhere).
        """
        ...


def describe_reason(category: Category, pending_count: int) -> str:
    """Human-readable reason a person sits in a queue."""
    plural = 's' if pending_count != 1 else ''
    if category == Category.UNSIGNED:
        if pending_count:
            return f"Missing signature ({pending_count} pending requirement{plural})"
        return "Missing signature"
    return f"{pending_count} pending requirement{plural}"


# ── Source registry ──────────────────────────────────────────────────────────
# sources.py populates SOURCES = {'replica': ReplicaEligibilitySource, ...}


def get_source(sources: Dict[str, Type[EligibilitySource]], name: str) -> EligibilitySource:
    """Look up and instantiate a registered eligibility source."""
    source_cls = sources.get(name)
    if not source_cls:
        raise ValueError(f"No eligibility source registered as '{name}'")
    return source_cls()
