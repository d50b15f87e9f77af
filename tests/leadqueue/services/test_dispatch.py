"""Tests for leadqueue.services.dispatch — lanes, claims and completions."""
from datetime import timedelta

import pytest

from leadqueue.models.call_contact import CallContact
from leadqueue.models.callback import Callback
from leadqueue.models.enums import CallbackStatus, CallOutcome, Category, InboundStatus, WorkItemKind
from leadqueue.services.dispatch import (
    WorkItem, candidates, get_next_claimable, claim, claim_next, complete, sweep_expired_leases,
)


# ---------------------------------------------------------------------------
# Candidate ordering
# ---------------------------------------------------------------------------

class TestCandidates:
    """Callbacks outrank ordinary leads; leads go best score first."""

    def test_callback_before_leads(self, make_lead, make_callback, now):
        make_lead(901, score=0)
        cb = make_callback(902)
        items = candidates('agent-1', now=now)
        assert items[0].kind == WorkItemKind.CALLBACK
        assert items[0].id == cb.id
        assert items[1].person_id == 901

    def test_leads_ordered_by_score(self, make_lead, now):
        make_lead(903, score=30)
        make_lead(904, score=5)
        make_lead(905, score=5)
        assert [i.person_id for i in candidates(now=now)] == [904, 905, 903]

    def test_category_lane(self, make_lead, now):
        make_lead(906, category=Category.UNSIGNED)
        make_lead(907, category=Category.OUTSTANDING_REQUIREMENTS)
        items = candidates(lane='outstanding_requirements', now=now)
        assert [i.person_id for i in items] == [907]

    def test_callback_lane_has_no_leads(self, make_lead, now):
        make_lead(908)
        assert candidates(lane='callback', now=now) == []

    def test_inbound_lane(self, make_entry, now):
        entry = make_entry('CA900', person_id=909)
        items = candidates('agent-1', lane='inbound', now=now)
        assert items[0].kind == WorkItemKind.INBOUND
        assert items[0].id == entry.id
        assert items[0].to_dict()['call_sid'] == 'CA900'

    def test_unknown_lane(self):
        with pytest.raises(ValueError):
            candidates(lane='vip')

    def test_inactive_and_uncategorised_skipped(self, make_lead, now):
        make_lead(910, active=False)
        make_lead(911, category=None)
        assert get_next_claimable(now=now) is None

    def test_leased_callback_hides_the_lead(self, make_lead, make_callback, now):
        make_lead(912)
        make_callback(912, status=CallbackStatus.ASSIGNED, assigned_to_agent_id='agent-2',
                      lease_expires_at=now + timedelta(minutes=4))
        assert candidates('agent-1', now=now) == []

    def test_cooldown_skips_failed_agent_only(self, make_lead, now):
        make_lead(913, last_failed_agent_id='agent-1')
        assert get_next_claimable('agent-1', now=now) is None
        assert get_next_claimable('agent-2', now=now).person_id == 913


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------

class TestClaimNext:
    """claim_next() never hands the same person to two agents."""

    def test_two_agents_one_lead(self, make_lead, now):
        lead = make_lead(921)
        first = claim_next('agent-1', now=now)
        second = claim_next('agent-2', now=now)
        assert first.person_id == 921
        assert second is None
        assert lead.claimed_by_agent_id == 'agent-1'
        assert lead.lease_expires_at == now + timedelta(seconds=300)

    def test_callback_then_lead(self, make_lead, make_callback, now):
        make_lead(922)
        make_callback(923)
        assert claim_next('agent-1', now=now).kind == WorkItemKind.CALLBACK
        assert claim_next('agent-2', now=now).kind == WorkItemKind.LEAD

    def test_falls_through_lost_claim(self, make_lead, now):
        from unittest.mock import patch
        make_lead(924, score=0)
        make_lead(925, score=1)
        real_claim = claim
        calls = []

        def racing_claim(kind, item_id, agent_id, now=None, session=None):
            calls.append(item_id)
            if len(calls) == 1:
                return False
            return real_claim(kind, item_id, agent_id, now=now, session=session)

        with patch('leadqueue.services.dispatch.claim', side_effect=racing_claim):
            item = claim_next('agent-1', now=now)
        assert item.person_id == 925
        assert len(calls) == 2

    def test_successful_pick_clears_cooldown(self, make_lead, now):
        stale = make_lead(926, last_failed_agent_id='agent-1')
        make_lead(927)
        item = claim_next('agent-1', now=now)
        assert item.person_id == 927
        assert stale.last_failed_agent_id is None

    def test_direct_claim(self, make_lead, now):
        lead = make_lead(928)
        assert claim(WorkItemKind.LEAD, lead.id, 'agent-1', now=now) is True
        assert claim(WorkItemKind.LEAD, lead.id, 'agent-2', now=now) is False


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------

class TestComplete:

    def test_lead_outcome_records_call(self, db_session, make_lead, now):
        lead = make_lead(931, score=10)
        claim(WorkItemKind.LEAD, lead.id, 'agent-1', now=now)
        result = complete(WorkItemKind.LEAD, lead.id, CallOutcome.NO_ANSWER, 'agent-1',
                          talk_time_seconds=0, now=now)
        assert result['call']['lead_found'] is True
        assert lead.score == 15
        assert lead.claimed_by_agent_id is None
        assert db_session.query(CallContact).filter_by(person_id=931).count() == 1

    def test_callback_requested_schedules_callback_for_same_agent(self, db_session, make_lead, now):
        lead = make_lead(932)
        when = now + timedelta(days=1)
        result = complete(WorkItemKind.LEAD, lead.id, CallOutcome.CALLBACK_REQUESTED, 'agent-1',
                          reschedule_at=when, now=now)
        cb = db_session.get(Callback, result['callback_id'])
        assert cb.preferred_agent_id == 'agent-1'
        assert cb.scheduled_for == when
        assert cb.category == Category.UNSIGNED

    def test_callback_outcome_runs_retry_rules(self, make_callback, now):
        cb = make_callback(933)
        claim(WorkItemKind.CALLBACK, cb.id, 'agent-1', now=now)
        result = complete(WorkItemKind.CALLBACK, cb.id, CallOutcome.BUSY, 'agent-1', now=now)
        assert result['state'] == 'retry_scheduled'
        assert cb.status == CallbackStatus.PENDING

    def test_inbound_completion(self, make_entry, now):
        entry = make_entry('CA930', person_id=934)
        claim(WorkItemKind.INBOUND, entry.id, 'agent-1', now=now)
        result = complete(WorkItemKind.INBOUND, entry.id, CallOutcome.ANSWERED, 'agent-1',
                          talk_time_seconds=120, now=now)
        assert result['completed'] is True
        assert entry.status == InboundStatus.COMPLETED

    def test_missing_item(self, now):
        with pytest.raises(ValueError):
            complete(WorkItemKind.LEAD, 999999, CallOutcome.ANSWERED, 'agent-1', now=now)

    def test_category_change_mid_call_skips_the_penalty(self, make_lead, now):
        from leadqueue.services.conversions import transition_lead
        lead = make_lead(935, category=Category.OUTSTANDING_REQUIREMENTS, score=40)
        claim(WorkItemKind.LEAD, lead.id, 'agent-1', now=now)
        assert lead.claimed_category == Category.OUTSTANDING_REQUIREMENTS
        transition_lead(935, Category.UNSIGNED, reason='requirements cleared')
        complete(WorkItemKind.LEAD, lead.id, CallOutcome.NO_ANSWER, 'agent-1', now=now)
        assert lead.category == Category.UNSIGNED
        assert lead.score == 0
        assert lead.claimed_category is None

    def test_explicit_category_still_wins(self, make_lead, now):
        lead = make_lead(936, score=10)
        claim(WorkItemKind.LEAD, lead.id, 'agent-1', now=now)
        complete(WorkItemKind.LEAD, lead.id, CallOutcome.NO_ANSWER, 'agent-1',
                 category=Category.OUTSTANDING_REQUIREMENTS, now=now)
        assert lead.score == 10


class TestSweep:

    def test_sweep_releases_every_lane(self, make_lead, make_callback, make_entry, now):
        lead = make_lead(941, claimed_by_agent_id='agent-1', lease_expires_at=now - timedelta(seconds=1))
        make_callback(942, status=CallbackStatus.ASSIGNED, assigned_to_agent_id='agent-1',
                      lease_expires_at=now - timedelta(seconds=1))
        make_entry('CA940', status=InboundStatus.ASSIGNED, assigned_to_agent_id='agent-1',
                   lease_expires_at=now - timedelta(seconds=1))
        assert sweep_expired_leases(now=now) == {'callbacks': 1, 'leads': 1, 'inbound': 1}
        assert lead.claimed_by_agent_id is None


class TestWorkItem:

    def test_to_dict(self):
        item = WorkItem(kind=WorkItemKind.LEAD, id=1, person_id=2, category=Category.UNSIGNED, score=4)
        assert item.to_dict() == {
            'kind': 'lead', 'id': 1, 'person_id': 2, 'category': 'unsigned', 'score': 4, 'reason': '',
        }
