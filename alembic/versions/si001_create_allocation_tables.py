"""Create pool, participant, ledger, audit and enrollment tables

Revision ID: si001
Revises:
Create Date: 2026-10-19

This migration creates:
- survey_link_pool and gift_card_pool (the two resource pools)
- participants and survey_enrollment_config (enrollment gate)
- survey_invitations, gift_card_assignments, gift_card_distribution_logs (ledger)
- gift_card_unsent_audit (append-only reversal audit)
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision = 'si001'
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(JSONB, "postgresql")


def upgrade() -> None:
    op.create_table(
        'survey_link_pool',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('long_url', sa.Text(), nullable=False, unique=True),
        sa.Column('short_url', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='AVAILABLE'),
        sa.Column('batch_label', sa.String(100), nullable=True),
        sa.Column('uploaded_by', sa.String(), nullable=True),
        sa.Column('uploaded_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
    )
    op.create_index('ix_survey_link_pool_batch_label', 'survey_link_pool', ['batch_label'])
    # FIFO claim order
    op.create_index('ix_survey_link_pool_claim_order', 'survey_link_pool', ['status', 'uploaded_at', 'id'])

    op.create_table(
        'gift_card_pool',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('card_code', sa.String(64), nullable=False, unique=True),
        sa.Column('card_type', sa.String(30), nullable=True),
        sa.Column('card_value', sa.Numeric(10, 2), nullable=True),
        sa.Column('redemption_url', sa.Text(), nullable=True),
        sa.Column('redemption_instructions', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='AVAILABLE'),
        sa.Column('batch_label', sa.String(100), nullable=True),
        sa.Column('uploaded_by', sa.String(), nullable=True),
        sa.Column('uploaded_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('assigned_assignment_id', sa.String(), nullable=True),
    )
    op.create_index('ix_gift_card_pool_batch_label', 'gift_card_pool', ['batch_label'])
    op.create_index('ix_gift_card_pool_assigned_assignment_id', 'gift_card_pool', ['assigned_assignment_id'])
    op.create_index('ix_gift_card_pool_claim_order', 'gift_card_pool', ['status', 'uploaded_at', 'id'])

    op.create_table(
        'participants',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('phone', sa.String(20), nullable=False, unique=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('consented_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'survey_enrollment_config',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('max_participants', sa.Integer(), nullable=True),
        sa.Column('is_enrollment_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('current_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_by', sa.String(), nullable=False, server_default='SYSTEM'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('current_count >= 0', name='check_current_count_positive'),
        sa.CheckConstraint(
            'max_participants IS NULL OR current_count <= max_participants',
            name='check_count_lte_max',
        ),
    )

    op.create_table(
        'survey_invitations',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column(
            'participant_id',
            sa.String(),
            sa.ForeignKey('participants.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column(
            'link_item_id',
            sa.String(),
            sa.ForeignKey('survey_link_pool.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('link_url', sa.Text(), nullable=True),
        sa.Column('short_link_url', sa.Text(), nullable=True),
        sa.Column('message_status', sa.String(30), nullable=False, server_default='pending'),
        sa.Column('message_sid', sa.String(100), nullable=True),
        sa.Column('error_code', sa.String(100), nullable=True),
        sa.Column('queued_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_survey_invitations_participant_id', 'survey_invitations', ['participant_id'])
    op.create_index('ix_survey_invitations_link_item_id', 'survey_invitations', ['link_item_id'])
    op.create_index('ix_survey_invitations_link_url', 'survey_invitations', ['link_url'])
    op.create_index('ix_survey_invitations_message_sid', 'survey_invitations', ['message_sid'])

    op.create_table(
        'gift_card_assignments',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column(
            'participant_id',
            sa.String(),
            sa.ForeignKey('participants.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column(
            'invitation_id',
            sa.String(),
            sa.ForeignKey('survey_invitations.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column(
            'pool_item_id',
            sa.String(),
            sa.ForeignKey('gift_card_pool.id', ondelete='SET NULL'),
            nullable=True,
        ),
        # Snapshot of the pool card at send time
        sa.Column('card_code', sa.String(64), nullable=False),
        sa.Column('card_type', sa.String(30), nullable=True),
        sa.Column('card_value', sa.Numeric(10, 2), nullable=True),
        sa.Column('redemption_url', sa.Text(), nullable=True),
        sa.Column('redemption_instructions', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),

        sa.Column('status', sa.String(20), nullable=False, server_default='SENT'),
        sa.Column('delivery_method', sa.String(10), nullable=False, server_default='EMAIL'),
        sa.Column('delivery_status', sa.String(30), nullable=True),
        sa.Column('message_sid', sa.String(100), nullable=True),
        sa.Column('sent_by', sa.String(), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('redeemed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('source', sa.String(20), nullable=False, server_default='POOL'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_gift_card_assignments_participant_id', 'gift_card_assignments', ['participant_id'])
    op.create_index('ix_gift_card_assignments_invitation_id', 'gift_card_assignments', ['invitation_id'])
    op.create_index('ix_gift_card_assignments_pool_item_id', 'gift_card_assignments', ['pool_item_id'])
    op.create_index('ix_gift_card_assignments_message_sid', 'gift_card_assignments', ['message_sid'])
    # One live gift card per participant, one live holder per pool card
    op.create_index(
        'uq_gift_card_assignments_active_participant',
        'gift_card_assignments',
        ['participant_id'],
        unique=True,
        postgresql_where=sa.text("status <> 'UNSENT'"),
        sqlite_where=sa.text("status <> 'UNSENT'"),
    )
    op.create_index(
        'uq_gift_card_assignments_active_pool_item',
        'gift_card_assignments',
        ['pool_item_id'],
        unique=True,
        postgresql_where=sa.text("status <> 'UNSENT'"),
        sqlite_where=sa.text("status <> 'UNSENT'"),
    )

    op.create_table(
        'gift_card_distribution_logs',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column(
            'assignment_id',
            sa.String(),
            sa.ForeignKey('gift_card_assignments.id'),
            nullable=False,
        ),
        sa.Column('action', sa.String(20), nullable=False),
        sa.Column('performed_by', sa.String(), nullable=False),
        sa.Column('details', JSON_TYPE, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        'ix_gift_card_distribution_logs_assignment_id',
        'gift_card_distribution_logs',
        ['assignment_id'],
    )

    op.create_table(
        'gift_card_unsent_audit',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('original_assignment_id', sa.String(), nullable=False),
        sa.Column('pool_item_id', sa.String(), nullable=True),
        sa.Column('card_code', sa.String(64), nullable=False),
        sa.Column('previous_status', sa.String(20), nullable=False),
        sa.Column('participant_snapshot', JSON_TYPE, nullable=False),
        sa.Column('assignment_snapshot', JSON_TYPE, nullable=True),
        sa.Column('unsent_by', sa.String(), nullable=False),
        sa.Column('unsent_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('reason', sa.Text(), nullable=True),
    )
    op.create_index(
        'ix_gift_card_unsent_audit_original_assignment_id',
        'gift_card_unsent_audit',
        ['original_assignment_id'],
    )


def downgrade() -> None:
    op.drop_table('gift_card_unsent_audit')
    op.drop_table('gift_card_distribution_logs')
    op.drop_index('uq_gift_card_assignments_active_pool_item', table_name='gift_card_assignments')
    op.drop_index('uq_gift_card_assignments_active_participant', table_name='gift_card_assignments')
    op.drop_table('gift_card_assignments')
    op.drop_table('survey_invitations')
    op.drop_table('survey_enrollment_config')
    op.drop_table('participants')
    op.drop_table('gift_card_pool')
    op.drop_table('survey_link_pool')
