"""Add claimed_category to lead_records

Revision ID: 8b2d6e4c1a73
Revises: 3f1c9a7d2e60
Create Date: 2026-10-18 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8b2d6e4c1a73'
down_revision: Union[str, None] = '3f1c9a7d2e60'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

CATEGORY = sa.Enum('unsigned', 'outstanding_requirements', name='category', native_enum=False, length=40)


def upgrade() -> None:
    op.add_column('lead_records', sa.Column('claimed_category', CATEGORY, nullable=True))


def downgrade() -> None:
    op.drop_column('lead_records', 'claimed_category')
