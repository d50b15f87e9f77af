"""Initial lead queue schema: leads, callbacks, inbound queue, conversion ledger, jobs

Revision ID: 3f1c9a7d2e60
Revises:
Create Date: 2026-10-12 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c9a7d2e60'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

CATEGORY = sa.Enum('unsigned', 'outstanding_requirements', name='category', native_enum=False, length=40)
CALL_OUTCOME = sa.Enum(
    'answered', 'contacted', 'no_answer', 'busy', 'failed', 'wrong_number', 'not_interested',
    'left_voicemail', 'callback_requested', 'reschedule', 'do_not_contact',
    name='calloutcome', native_enum=False, length=40,
)


def upgrade() -> None:
    """Upgrade schema."""
    # Ordinary queue
    op.create_table('lead_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('person_id', sa.BigInteger(), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('category', CATEGORY, nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('pending_count', sa.Integer(), nullable=True),
        sa.Column('total_attempts', sa.Integer(), nullable=False),
        sa.Column('successful_calls', sa.Integer(), nullable=False),
        sa.Column('last_outcome', CALL_OUTCOME, nullable=True),
        sa.Column('last_aged_on', sa.Date(), nullable=True),
        sa.Column('last_reset_at', sa.DateTime(), nullable=True),
        sa.Column('last_contacted_at', sa.DateTime(), nullable=True),
        sa.Column('last_checked_at', sa.DateTime(), nullable=True),
        sa.Column('last_converted_at', sa.DateTime(), nullable=True),
        sa.Column('claimed_by_agent_id', sa.Text(), nullable=True),
        sa.Column('lease_expires_at', sa.DateTime(), nullable=True),
        sa.Column('last_failed_agent_id', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('person_id'),
    )
    op.create_index('ix_lead_records_queue', 'lead_records', ['active', 'category', 'score', 'created_at'])

    # Callback lane
    op.create_table('callbacks',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('person_id', sa.BigInteger(), nullable=False),
        sa.Column('category', CATEGORY, nullable=True),
        sa.Column('scheduled_for', sa.DateTime(), nullable=False),
        sa.Column('preferred_agent_id', sa.Text(), nullable=True),
        sa.Column('status', sa.Enum('pending', 'assigned', 'completed', name='callbackstatus',
                                    native_enum=False, length=40), nullable=False),
        sa.Column('assigned_to_agent_id', sa.Text(), nullable=True),
        sa.Column('assigned_at', sa.DateTime(), nullable=True),
        sa.Column('lease_expires_at', sa.DateTime(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False),
        sa.Column('max_retries', sa.Integer(), nullable=False),
        sa.Column('last_failed_agent_id', sa.Text(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('completion_reason', sa.Text(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_callbacks_person_id', 'callbacks', ['person_id'])
    op.create_index('ix_callbacks_due', 'callbacks', ['status', 'scheduled_for'])

    # Inbound lane
    op.create_table('inbound_call_queue',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('call_sid', sa.Text(), nullable=False),
        sa.Column('person_id', sa.BigInteger(), nullable=True),
        sa.Column('phone_number', sa.Text(), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('queue_position', sa.Integer(), nullable=True),
        sa.Column('status', sa.Enum('waiting', 'assigned', 'connecting', 'completed', 'abandoned',
                                    name='inboundstatus', native_enum=False, length=40), nullable=False),
        sa.Column('entered_at', sa.DateTime(), nullable=False),
        sa.Column('assigned_to_agent_id', sa.Text(), nullable=True),
        sa.Column('assigned_at', sa.DateTime(), nullable=True),
        sa.Column('lease_expires_at', sa.DateTime(), nullable=True),
        sa.Column('last_attempted_agent_id', sa.Text(), nullable=True),
        sa.Column('attempts_count', sa.Integer(), nullable=False),
        sa.Column('max_wait_reached', sa.Boolean(), nullable=False),
        sa.Column('estimated_wait_seconds', sa.Integer(), nullable=True),
        sa.Column('abandon_reason', sa.Text(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('call_sid'),
    )

    # Conversion ledger + audit trail
    op.create_table('conversions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('person_id', sa.BigInteger(), nullable=False),
        sa.Column('previous_category', CATEGORY, nullable=True),
        sa.Column('conversion_type', sa.Enum('signature_obtained', 'requirements_completed', 'scored_out',
                                             'no_longer_eligible', name='conversiontype',
                                             native_enum=False, length=40), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('final_score', sa.Integer(), nullable=True),
        sa.Column('total_attempts', sa.Integer(), nullable=True),
        sa.Column('converted_at', sa.DateTime(), nullable=False),
        sa.Column('primary_agent_id', sa.Text(), nullable=True),
        sa.Column('contributing_agents', sa.JSON(), nullable=True),
        sa.Column('attribution_method', sa.Text(), nullable=True),
        sa.Column('attributed_at', sa.DateTime(), nullable=True),
        sa.Column('source', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_conversions_person_converted', 'conversions', ['person_id', 'converted_at'])

    op.create_table('lead_transitions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('person_id', sa.BigInteger(), nullable=False),
        sa.Column('from_category', CATEGORY, nullable=True),
        sa.Column('to_category', CATEGORY, nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('source', sa.Enum('discovery', 'conversion_sweep', 'call_outcome', 'callback', 'manual',
                                    'external', name='transitionsource', native_enum=False, length=40),
                  nullable=False),
        sa.Column('agent_id', sa.Text(), nullable=True),
        sa.Column('conversion_id', sa.Integer(), nullable=True),
        sa.Column('conversion_logged', sa.Boolean(), nullable=False),
        sa.Column('recovery_status', sa.Enum('already_logged', 'recovered', 'manual_review', 'recovery_failed',
                                             name='recoverystatus', native_enum=False, length=40),
                  nullable=True),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['conversion_id'], ['conversions.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_lead_transitions_person_id', 'lead_transitions', ['person_id'])
    op.create_index('ix_lead_transitions_exit_scan', 'lead_transitions', ['conversion_logged', 'occurred_at'])

    op.create_table('call_contacts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('person_id', sa.BigInteger(), nullable=False),
        sa.Column('agent_id', sa.Text(), nullable=False),
        sa.Column('category', CATEGORY, nullable=True),
        sa.Column('outcome', CALL_OUTCOME, nullable=False),
        sa.Column('talk_time_seconds', sa.Integer(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_call_contacts_person_started', 'call_contacts', ['person_id', 'started_at'])

    # Agents + batch job bookkeeping
    op.create_table('agent_sessions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('agent_id', sa.Text(), nullable=False),
        sa.Column('status', sa.Enum('available', 'on_call', 'break', 'offline', name='agentstatus',
                                    native_enum=False, length=40), nullable=False),
        sa.Column('last_heartbeat_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('agent_id'),
    )

    op.create_table('job_cursors',
        sa.Column('key', sa.Text(), nullable=False),
        sa.Column('position', sa.BigInteger(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('key'),
    )

    op.create_table('job_runs',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('job', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('params', sa.JSON(), nullable=True),
        sa.Column('processed', sa.Integer(), nullable=True),
        sa.Column('failed', sa.Integer(), nullable=True),
        sa.Column('skipped', sa.Integer(), nullable=True),
        sa.Column('stats', sa.JSON(), nullable=True),
        sa.Column('errors', sa.JSON(), nullable=True),
        sa.Column('can_resume', sa.Boolean(), nullable=True),
        sa.Column('next_offset', sa.Text(), nullable=True),
        sa.Column('duration_seconds', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_job_runs_job_created', 'job_runs', ['job', 'created_at'])

    op.create_table('leak_scan_metrics',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('scanned_at', sa.DateTime(), nullable=False),
        sa.Column('window_minutes', sa.Integer(), nullable=True),
        sa.Column('exits_checked', sa.Integer(), nullable=True),
        sa.Column('potential_leaks', sa.Integer(), nullable=True),
        sa.Column('recovered', sa.Integer(), nullable=True),
        sa.Column('unrecovered', sa.Integer(), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_leak_scan_metrics_scanned_at', 'leak_scan_metrics', ['scanned_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_leak_scan_metrics_scanned_at', table_name='leak_scan_metrics')
    op.drop_table('leak_scan_metrics')
    op.drop_index('ix_job_runs_job_created', table_name='job_runs')
    op.drop_table('job_runs')
    op.drop_table('job_cursors')
    op.drop_table('agent_sessions')
    op.drop_index('ix_call_contacts_person_started', table_name='call_contacts')
    op.drop_table('call_contacts')
    op.drop_index('ix_lead_transitions_exit_scan', table_name='lead_transitions')
    op.drop_index('ix_lead_transitions_person_id', table_name='lead_transitions')
    op.drop_table('lead_transitions')
    op.drop_index('ix_conversions_person_converted', table_name='conversions')
    op.drop_table('conversions')
    op.drop_table('inbound_call_queue')
    op.drop_index('ix_callbacks_due', table_name='callbacks')
    op.drop_index('ix_callbacks_person_id', table_name='callbacks')
    op.drop_table('callbacks')
    op.drop_index('ix_lead_records_queue', table_name='lead_records')
    op.drop_table('lead_records')
