"""Tests for leadqueue.services.conversions — the deduplicated conversion ledger."""
from datetime import timedelta

import pytest

from leadqueue.database import utcnow
from leadqueue.models.call_contact import CallContact
from leadqueue.models.conversion_record import ConversionRecord
from leadqueue.models.enums import CallOutcome, Category, ConversionType, TransitionSource
from leadqueue.models.lead_transition import LeadTransition
from leadqueue.pipeline.base import PersonStatus
from leadqueue.services.conversions import (
    record_conversion, attribute_agents, infer_conversion_type, transition_lead,
    backfill_attribution, list_conversions,
)


def _contact(session, person_id, agent_id, started_at, talk=60):
    session.add(CallContact(person_id=person_id, agent_id=agent_id, outcome=CallOutcome.ANSWERED,
                            talk_time_seconds=talk, started_at=started_at))
    session.commit()


# ---------------------------------------------------------------------------
# Dedup
# ---------------------------------------------------------------------------

class TestRecordConversion:
    """At most one record per person inside the dedup window."""

    def test_creates_record_from_lead_snapshot(self, make_lead):
        make_lead(1101, score=33, total_attempts=4)
        record, created = record_conversion(1101, ConversionType.SIGNATURE_OBTAINED, source='test')
        assert created is True
        assert record.previous_category == Category.UNSIGNED
        assert record.final_score == 33
        assert record.total_attempts == 4

    def test_second_write_in_window_deduplicated(self, db_session, make_lead):
        make_lead(1102)
        at = utcnow()
        first, _ = record_conversion(1102, ConversionType.SIGNATURE_OBTAINED, converted_at=at)
        again, created = record_conversion(1102, ConversionType.NO_LONGER_ELIGIBLE,
                                           converted_at=at + timedelta(minutes=20))
        assert created is False
        assert again.id == first.id
        assert db_session.query(ConversionRecord).filter_by(person_id=1102).count() == 1

    def test_outside_window_creates_new(self, db_session, make_lead):
        make_lead(1103)
        at = utcnow()
        record_conversion(1103, ConversionType.SIGNATURE_OBTAINED, converted_at=at - timedelta(hours=3))
        _, created = record_conversion(1103, ConversionType.REQUIREMENTS_COMPLETED, converted_at=at)
        assert created is True
        assert db_session.query(ConversionRecord).filter_by(person_id=1103).count() == 2

    def test_dedup_without_lead_record(self):
        at = utcnow()
        record_conversion(1104, ConversionType.NO_LONGER_ELIGIBLE, converted_at=at)
        _, created = record_conversion(1104, ConversionType.NO_LONGER_ELIGIBLE, converted_at=at)
        assert created is False


# ---------------------------------------------------------------------------
# Attribution
# ---------------------------------------------------------------------------

class TestAttribution:

    def test_most_recent_qualifying_agent_is_primary(self, db_session):
        at = utcnow()
        _contact(db_session, 1111, 'agent-a', at - timedelta(days=3))
        _contact(db_session, 1111, 'agent-b', at - timedelta(days=1))
        _contact(db_session, 1111, 'agent-c', at - timedelta(hours=1), talk=10)   # too short
        _contact(db_session, 1111, 'agent-d', at - timedelta(days=45))           # too old
        primary, contributing = attribute_agents(db_session, 1111, at)
        assert primary == 'agent-b'
        assert contributing == ['agent-a']

    def test_conversion_attributed_inline(self, db_session, make_lead):
        make_lead(1112)
        at = utcnow()
        _contact(db_session, 1112, 'agent-a', at - timedelta(minutes=30), talk=300)
        record, _ = record_conversion(1112, ConversionType.SIGNATURE_OBTAINED, converted_at=at)
        assert record.primary_agent_id == 'agent-a'
        assert record.attribution_method == 'inline'

    def test_backfill_attributes_late_contacts(self, db_session):
        at = utcnow()
        record, _ = record_conversion(1113, ConversionType.SIGNATURE_OBTAINED, converted_at=at - timedelta(hours=1))
        assert record.primary_agent_id is None
        _contact(db_session, 1113, 'agent-late', at - timedelta(minutes=90), talk=200)
        result = backfill_attribution(hours_back=6, now=at)
        assert result.stats['attributed'] == 1
        assert record.primary_agent_id == 'agent-late'
        assert record.attribution_method == 'backfill'


# ---------------------------------------------------------------------------
# Conversion type inference
# ---------------------------------------------------------------------------

class TestInferConversionType:

    def test_score_ceiling(self):
        assert infer_conversion_type(Category.UNSIGNED, None, score=200) == ConversionType.SCORED_OUT

    def test_no_evidence(self):
        assert infer_conversion_type(Category.UNSIGNED, None) is None

    def test_still_eligible(self):
        status = PersonStatus(person_id=1, has_signature=False, has_open_claim=True)
        assert infer_conversion_type(Category.UNSIGNED, status) is None

    def test_disabled(self):
        status = PersonStatus(person_id=1, enabled=False)
        assert infer_conversion_type(Category.UNSIGNED, status) == ConversionType.NO_LONGER_ELIGIBLE

    def test_signed(self):
        status = PersonStatus(person_id=1, has_signature=True, pending_count=0)
        assert infer_conversion_type(Category.UNSIGNED, status) == ConversionType.SIGNATURE_OBTAINED

    def test_requirements_done(self):
        status = PersonStatus(person_id=1, has_signature=True, pending_count=0)
        assert (infer_conversion_type(Category.OUTSTANDING_REQUIREMENTS, status)
                == ConversionType.REQUIREMENTS_COMPLETED)


# ---------------------------------------------------------------------------
# Manual transitions + listing
# ---------------------------------------------------------------------------

class TestTransitionLead:

    def test_exit_logs_conversion_and_audit_row(self, db_session, make_lead):
        lead = make_lead(1121, score=12)
        result = transition_lead(1121, None, reason='Signed on call', agent_id='agent-1',
                                 conversion_type=ConversionType.SIGNATURE_OBTAINED)
        assert result['changed'] is True
        assert lead.active is False
        row = db_session.query(LeadTransition).filter_by(person_id=1121).one()
        assert row.conversion_logged is True
        assert row.conversion_id == result['conversion_id']
        assert row.source == TransitionSource.MANUAL

    def test_switch_resets_score(self, make_lead):
        lead = make_lead(1122, score=80)
        transition_lead(1122, Category.OUTSTANDING_REQUIREMENTS, reason='Signature received')
        assert lead.category == Category.OUTSTANDING_REQUIREMENTS
        assert lead.score == 0

    def test_same_category_is_noop(self, make_lead):
        make_lead(1123)
        assert transition_lead(1123, Category.UNSIGNED)['changed'] is False

    def test_unknown_person(self):
        with pytest.raises(ValueError):
            transition_lead(1124, None)


class TestListConversions:

    def test_filters_and_paginates(self):
        at = utcnow()
        for offset, person in enumerate((1131, 1132, 1133)):
            record_conversion(person, ConversionType.SCORED_OUT, converted_at=at - timedelta(minutes=offset))
        record_conversion(1134, ConversionType.SIGNATURE_OBTAINED, converted_at=at)
        page = list_conversions(page=1, per_page=2, conversion_type=ConversionType.SCORED_OUT)
        assert page['total'] == 3
        assert page['pages'] == 2
        assert [i['person_id'] for i in page['items']] == [1131, 1132]
        assert list_conversions(person_id=1134)['items'][0]['conversion_type'] == 'signature_obtained'
