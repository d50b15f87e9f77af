"""
Lease primitives shared by every claimable unit of work.

A claim is one conditional UPDATE; the affected row count is the only signal
of success. No in-process or external lock is involved, so any number of
workers can race on the same row and exactly one wins.
"""
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import update, or_, and_

from leadqueue.config import CALLBACK_LEASE_SECONDS, LEAD_LEASE_SECONDS, INBOUND_GRACE_SECONDS


@dataclass(frozen=True)
class Lease:
    """Time-bounded exclusive claim. Expiry is the only release mechanism."""
    name: str
    ttl_seconds: int

    def expires_at(self, now):
        return now + timedelta(seconds=self.ttl_seconds)


CALLBACK_LEASE = Lease('callback', CALLBACK_LEASE_SECONDS)
LEAD_LEASE = Lease('lead', LEAD_LEASE_SECONDS)
INBOUND_GRACE = Lease('inbound', INBOUND_GRACE_SECONDS)


def lease_free(holder_column, expiry_column, now):
    """SQL condition: nobody holds the row, or the holder's lease has lapsed."""
    return or_(holder_column.is_(None), expiry_column.is_(None), expiry_column < now)


def lease_expired(expiry_column, now):
    """SQL condition: a lease was set and has lapsed."""
    return and_(expiry_column.isnot(None), expiry_column < now)


def conditional_update(session, model, where, values):
    """Run UPDATE model SET values WHERE where; return affected row count."""
    stmt = (
        update(model)
        .where(*where)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return session.execute(stmt).rowcount


def claim_row(session, model, row_id, where, values):
    """Compare-and-swap on a single row. True = this caller won the claim."""
    return conditional_update(session, model, [model.id == row_id, *where], values) == 1
