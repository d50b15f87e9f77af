"""
In-memory eligibility source — canned people for local runs and tests.

Activated with MOCK_ELIGIBILITY=1. Behaves like the replica: ascending
person_id pages, unsigned taking priority over outstanding requirements,
and an `unavailable` switch to simulate an outage.
"""
import logging
from typing import Dict, Iterable, Optional

from leadqueue.errors import SourceUnavailableError
from leadqueue.models.enums import Category
from leadqueue.pipeline.base import (
    EligibilitySource, EligibilityPage, EligibleLead, PersonStatus, describe_reason,
)

logger = logging.getLogger('pipeline.mock')


SAMPLE_PEOPLE = [
    # person_id, has_signature, pending requirements, open claim
    (1001, False, 2, True),
    (1002, False, 0, True),
    (1003, True, 3, True),
    (1004, True, 1, True),
    (1005, True, 0, True),
    (1006, False, 1, True),
    (1007, True, 4, True),
    (1008, False, 0, False),
]


class InMemoryEligibilitySource(EligibilitySource):
    name = 'mock'
    description = '[MOCK] In-memory eligibility data'

    def __init__(self, people: Optional[Dict[int, PersonStatus]] = None):
        self.people: Dict[int, PersonStatus] = dict(people or {})
        self.unavailable = False
        self.calls = 0

    @classmethod
    def with_sample_people(cls):
        source = cls()
        for person_id, signed, pending, open_claim in SAMPLE_PEOPLE:
            source.set_person(person_id, has_signature=signed, pending_count=pending, has_open_claim=open_claim)
        return source

    def set_person(self, person_id, enabled=True, has_signature=False, pending_count=0, has_open_claim=True):
        self.people[person_id] = PersonStatus(
            person_id=person_id,
            enabled=enabled,
            has_signature=has_signature,
            pending_count=pending_count,
            has_open_claim=has_open_claim,
        )

    def remove_person(self, person_id):
        self.people.pop(person_id, None)

    def _check_available(self):
        self.calls += 1
        if self.unavailable:
            raise SourceUnavailableError("mock eligibility source is offline")

    def list_eligible(self, category: Category, cursor: Optional[int], limit: int) -> EligibilityPage:
        self._check_available()
        matching = sorted(
            pid for pid, status in self.people.items()
            if status.category == category and (cursor is None or pid > cursor)
        )
        page = matching[:limit]
        items = [
            EligibleLead(
                person_id=pid,
                category=category,
                reason=describe_reason(category, self.people[pid].pending_count),
                pending_count=self.people[pid].pending_count,
            )
            for pid in page
        ]
        next_cursor = page[-1] if len(matching) > limit else None
        return EligibilityPage(items=items, next_cursor=next_cursor)

    def check_people(self, person_ids: Iterable[int]) -> Dict[int, PersonStatus]:
        self._check_available()
        result = {}
        for pid in person_ids:
            result[pid] = self.people.get(pid) or PersonStatus(person_id=pid, enabled=False)
        return result
