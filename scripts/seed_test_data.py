#!/usr/bin/env python3
"""
Seed test data for exercising the dispatch API locally.

Creates a small call floor covering the key scenarios:
  1. Leads in both categories, spread across every score band
  2. Due callbacks (one preferring a named agent, one on its retry)
  3. Inbound callers waiting (known and unknown)
  4. Agents with fresh heartbeats and some call history

Usage:
    python scripts/seed_test_data.py          # seed all scenarios
    python scripts/seed_test_data.py --clear  # wipe seeded data first

Requires: DATABASE_URL set (or defaults to sqlite:///local.db).
Seeded people use person_ids from SEED_PERSON_BASE upward so they can be
cleared without touching real leads.
"""
import sys
import os
import argparse
from datetime import timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from leadqueue import create_app
from leadqueue.database import get_session, engine, Base, utcnow
from leadqueue.models.agent_session import AgentSession
from leadqueue.models.call_contact import CallContact
from leadqueue.models.callback import Callback
from leadqueue.models.enums import AgentStatus, CallOutcome, CallbackStatus, Category, InboundStatus
from leadqueue.models.inbound_call import InboundCallQueueEntry
from leadqueue.models.lead_record import LeadRecord
from leadqueue.pipeline.base import describe_reason


SEED_PERSON_BASE = 9_000_000
SEED_CALL_PREFIX = 'CAseed'

AGENTS = ['agent-amy', 'agent-ben', 'agent-cho']

# (offset, category, score, pending requirements)
LEADS = [
    (1,  Category.UNSIGNED, 0, 2),
    (2,  Category.UNSIGNED, 12, 0),
    (3,  Category.UNSIGNED, 48, 1),
    (4,  Category.UNSIGNED, 95, 3),
    (5,  Category.UNSIGNED, 160, 0),
    (6,  Category.UNSIGNED, 199, 1),
    (11, Category.OUTSTANDING_REQUIREMENTS, 3, 1),
    (12, Category.OUTSTANDING_REQUIREMENTS, 30, 4),
    (13, Category.OUTSTANDING_REQUIREMENTS, 75, 2),
    (14, Category.OUTSTANDING_REQUIREMENTS, 140, 1),
]


def person(offset):
    return SEED_PERSON_BASE + offset


# ── Scenarios ────────────────────────────────────────────────────────────────

def seed_leads(session, now):
    for offset, category, score, pending in LEADS:
        session.add(LeadRecord(
            person_id=person(offset),
            category=category,
            score=score,
            active=True,
            reason=describe_reason(category, pending),
            pending_count=pending,
            total_attempts=score // 5,
            created_at=now - timedelta(days=max(1, score // 2)),
            last_checked_at=now,
        ))
    session.flush()
    print(f'  [1] Leads:     {len(LEADS)} across both categories')


def seed_callbacks(session, now):
    session.add(Callback(
        person_id=person(3), category=Category.UNSIGNED,
        scheduled_for=now - timedelta(minutes=5), preferred_agent_id=AGENTS[0],
        status=CallbackStatus.PENDING, max_retries=1, reason='Asked to call back after lunch',
    ))
    session.add(Callback(
        person_id=person(12), category=Category.OUTSTANDING_REQUIREMENTS,
        scheduled_for=now - timedelta(minutes=1), status=CallbackStatus.PENDING,
        retry_count=1, max_retries=1, last_failed_agent_id=AGENTS[1],
        reason='Callback retry: no_answer',
    ))
    session.add(Callback(
        person_id=person(4), category=Category.UNSIGNED,
        scheduled_for=now + timedelta(hours=2), status=CallbackStatus.PENDING, max_retries=1,
    ))
    session.flush()
    print('  [2] Callbacks: 2 due, 1 later today')


def seed_inbound(session, now):
    session.add(InboundCallQueueEntry(
        call_sid=f'{SEED_CALL_PREFIX}001', person_id=person(2), phone_number='+447700900001',
        priority=70, queue_position=1, status=InboundStatus.WAITING, entered_at=now - timedelta(minutes=3),
    ))
    session.add(InboundCallQueueEntry(
        call_sid=f'{SEED_CALL_PREFIX}002', phone_number='+447700900002',
        priority=50, queue_position=2, status=InboundStatus.WAITING, entered_at=now - timedelta(minutes=1),
    ))
    session.flush()
    print('  [3] Inbound:   1 known caller, 1 unknown caller waiting')


def seed_agents(session, now):
    for agent_id in AGENTS:
        row = session.query(AgentSession).filter_by(agent_id=agent_id).first()
        if row is None:
            row = AgentSession(agent_id=agent_id)
            session.add(row)
        row.status = AgentStatus.AVAILABLE
        row.last_heartbeat_at = now
    for offset, agent_id, outcome, talk in [
        (3, AGENTS[0], CallOutcome.ANSWERED, 240),
        (12, AGENTS[1], CallOutcome.NO_ANSWER, 0),
        (13, AGENTS[2], CallOutcome.CONTACTED, 45),
    ]:
        session.add(CallContact(
            person_id=person(offset), agent_id=agent_id, outcome=outcome,
            talk_time_seconds=talk, started_at=now - timedelta(hours=3),
        ))
    session.flush()
    print(f'  [4] Agents:    {len(AGENTS)} available, 3 past calls')


# ── Clear / Main ─────────────────────────────────────────────────────────────

def clear_seeded_data(session):
    """Remove every row that belongs to a seeded person or call."""
    deleted = {
        'leads': session.query(LeadRecord).filter(LeadRecord.person_id >= SEED_PERSON_BASE).delete(synchronize_session=False),
        'callbacks': session.query(Callback).filter(Callback.person_id >= SEED_PERSON_BASE).delete(synchronize_session=False),
        'calls': session.query(CallContact).filter(CallContact.person_id >= SEED_PERSON_BASE).delete(synchronize_session=False),
        'inbound': (
            session.query(InboundCallQueueEntry)
            .filter(InboundCallQueueEntry.call_sid.like(f'{SEED_CALL_PREFIX}%'))
            .delete(synchronize_session=False)
        ),
        'agents': session.query(AgentSession).filter(AgentSession.agent_id.in_(AGENTS)).delete(synchronize_session=False),
    }
    session.commit()
    print('Cleared ' + ', '.join(f'{n} {name}' for name, n in deleted.items()) + '.')


def main():
    parser = argparse.ArgumentParser(description='Seed test data for local dispatch testing')
    parser.add_argument('--clear', action='store_true', help='Clear seeded data before (or instead of) seeding')
    parser.add_argument('--clear-only', action='store_true', help='Only clear, do not re-seed')
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        # Ensure tables exist (for SQLite local dev)
        Base.metadata.create_all(engine)

        session = get_session()
        try:
            if args.clear or args.clear_only:
                clear_seeded_data(session)
                if args.clear_only:
                    return

            print('Seeding test data...')
            now = utcnow()
            seed_leads(session, now)
            seed_callbacks(session, now)
            seed_inbound(session, now)
            seed_agents(session, now)
            session.commit()
            print('\nDone! Try: curl -X POST localhost:8080/api/dispatch/next '
                  '-H "Content-Type: application/json" -d \'{"agent_id": "agent-amy"}\'')

        except Exception as e:
            session.rollback()
            print(f'Error: {e}')
            raise
        finally:
            session.close()


if __name__ == '__main__':
    main()
