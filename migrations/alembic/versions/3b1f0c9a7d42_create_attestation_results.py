"""create attestation results

Revision ID: 3b1f0c9a7d42
Revises:
Create Date: 2026-10-19 10:42:11.512093

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3b1f0c9a7d42'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'attestation_results',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('xrpl_tx_hash', sa.String(length=64), nullable=False),
        sa.Column('request_id', sa.BigInteger(), nullable=False),
        sa.Column('outcome', sa.String(length=20), nullable=False),
        sa.Column('paid_amount_drops', sa.BigInteger(), nullable=True),
        sa.Column('response_tx_hash', sa.String(length=66), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('recorded_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=True),
        sa.CheckConstraint("outcome IN ('SUBMITTED', 'FAILED', 'DUPLICATE')", name='valid_attestation_outcome'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_attestation_results_request', 'attestation_results', ['request_id'])
    op.create_index('idx_attestation_results_tx', 'attestation_results', ['xrpl_tx_hash'])


def downgrade() -> None:
    op.drop_index('idx_attestation_results_tx', table_name='attestation_results')
    op.drop_index('idx_attestation_results_request', table_name='attestation_results')
    op.drop_table('attestation_results')
