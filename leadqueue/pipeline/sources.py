"""
Eligibility sources — read-only queries into the system of record.

The replica source runs raw SQL against a read replica of the claims
database. Every call goes through the 'eligibility_source' circuit breaker;
any failure surfaces as SourceUnavailableError so discovery can abort the
current batch without touching committed work.
"""
import logging
import os
from typing import Dict, Iterable, Optional

from sqlalchemy import create_engine, text, bindparam
from sqlalchemy.exc import SQLAlchemyError

from leadqueue.config import REPLICA_DATABASE_URL, EXCLUDED_REQUIREMENT_TYPES, ELIGIBILITY_SOURCE
from leadqueue.errors import SourceUnavailableError
from leadqueue.models.enums import Category
from leadqueue.pipeline.base import (
    EligibilitySource, EligibilityPage, EligibleLead, PersonStatus, describe_reason, get_source,
)
from leadqueue.pipeline.mock_sources import InMemoryEligibilitySource
from leadqueue.services.circuit_breaker import CircuitOpenError, get_breaker

logger = logging.getLogger('pipeline.sources')


_UNSIGNED_SQL = text("""
    SELECT u.id AS person_id,
           COUNT(CASE WHEN cr.status = 'PENDING' AND cr.type NOT IN :excluded THEN 1 END) AS pending_count
    FROM users u
    JOIN claims c ON c.user_id = u.id
    LEFT JOIN claim_requirements cr ON cr.claim_id = c.id
    WHERE u.is_enabled = :enabled
      AND (u.status IS NULL OR u.status <> 'inactive')
      AND u.current_signature_file_id IS NULL
      AND c.status <> 'complete'
      AND u.id > :cursor
    GROUP BY u.id
    ORDER BY u.id
    LIMIT :limit
""").bindparams(bindparam('excluded', expanding=True))

_OUTSTANDING_SQL = text("""
    SELECT u.id AS person_id,
           COUNT(cr.id) AS pending_count
    FROM users u
    JOIN claims c ON c.user_id = u.id
    JOIN claim_requirements cr ON cr.claim_id = c.id
    WHERE u.is_enabled = :enabled
      AND (u.status IS NULL OR u.status <> 'inactive')
      AND u.current_signature_file_id IS NOT NULL
      AND cr.status = 'PENDING'
      AND cr.type NOT IN :excluded
      AND u.id > :cursor
    GROUP BY u.id
    ORDER BY u.id
    LIMIT :limit
""").bindparams(bindparam('excluded', expanding=True))

_CHECK_SQL = text("""
    SELECT u.id AS person_id,
           u.is_enabled AS is_enabled,
           u.status AS status,
           u.current_signature_file_id AS signature_file_id,
           SUM(CASE WHEN c.id IS NOT NULL AND c.status <> 'complete' THEN 1 ELSE 0 END) AS open_claims,
           COUNT(CASE WHEN cr.status = 'PENDING' AND cr.type NOT IN :excluded THEN 1 END) AS pending_count
    FROM users u
    LEFT JOIN claims c ON c.user_id = u.id
    LEFT JOIN claim_requirements cr ON cr.claim_id = c.id
    WHERE u.id IN :ids
    GROUP BY u.id, u.is_enabled, u.status, u.current_signature_file_id
""").bindparams(bindparam('excluded', expanding=True), bindparam('ids', expanding=True))


class ReplicaEligibilitySource(EligibilitySource):
    name = 'replica'
    description = 'Read replica of the claims database (users / claims / claim_requirements)'

    def __init__(self, engine=None, breaker=None):
        self._engine = engine
        self._breaker = breaker

    @property
    def engine(self):
        if self._engine is None:
            if not REPLICA_DATABASE_URL:
                raise SourceUnavailableError("REPLICA_DATABASE_URL is not set")
            url = REPLICA_DATABASE_URL.replace('postgres://', 'postgresql://', 1)
            self._engine = create_engine(url, pool_pre_ping=True)
        return self._engine

    @property
    def breaker(self):
        if self._breaker is None:
            self._breaker = get_breaker('eligibility_source')
        return self._breaker

    def _fetch(self, statement, params):
        with self.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(statement, params)]

    def _query(self, statement, params):
        try:
            return self.breaker.call(self._fetch, statement, params)
        except CircuitOpenError as e:
            raise SourceUnavailableError(str(e)) from e
        except SQLAlchemyError as e:
            logger.error("Replica query failed: %s", e)
            raise SourceUnavailableError(f"Replica query failed: {e}") from e

    def list_eligible(self, category: Category, cursor: Optional[int], limit: int) -> EligibilityPage:
        statement = _UNSIGNED_SQL if category == Category.UNSIGNED else _OUTSTANDING_SQL
        rows = self._query(statement, {
            'excluded': EXCLUDED_REQUIREMENT_TYPES,
            'enabled': True,
            'cursor': cursor if cursor is not None else -1,
            'limit': limit,
        })
        items = [
            EligibleLead(
                person_id=int(row['person_id']),
                category=category,
                reason=describe_reason(category, int(row['pending_count'] or 0)),
                pending_count=int(row['pending_count'] or 0),
            )
            for row in rows
        ]
        next_cursor = items[-1].person_id if len(items) == limit else None
        return EligibilityPage(items=items, next_cursor=next_cursor)

    def check_people(self, person_ids: Iterable[int]) -> Dict[int, PersonStatus]:
        ids = [int(p) for p in person_ids]
        if not ids:
            return {}
        rows = self._query(_CHECK_SQL, {'excluded': EXCLUDED_REQUIREMENT_TYPES, 'ids': ids})
        statuses = {pid: PersonStatus(person_id=pid, enabled=False) for pid in ids}
        for row in rows:
            pid = int(row['person_id'])
            statuses[pid] = PersonStatus(
                person_id=pid,
                enabled=bool(row['is_enabled']) and row['status'] != 'inactive',
                has_signature=row['signature_file_id'] is not None,
                pending_count=int(row['pending_count'] or 0),
                has_open_claim=int(row['open_claims'] or 0) > 0,
            )
        return statuses


# ── Registry ─────────────────────────────────────────────────────────────────

SOURCES = {
    'replica': ReplicaEligibilitySource,
    'mock': InMemoryEligibilitySource,
}


def default_source() -> EligibilitySource:
    """Source chosen by env: MOCK_ELIGIBILITY=1 forces the in-memory fake."""
    if os.getenv('MOCK_ELIGIBILITY'):
        logger.info("MOCK_ELIGIBILITY active, using in-memory eligibility source")
        return InMemoryEligibilitySource.with_sample_people()
    return get_source(SOURCES, ELIGIBILITY_SOURCE)
