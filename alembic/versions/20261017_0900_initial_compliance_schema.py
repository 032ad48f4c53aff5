"""Initial compliance schema

Revision ID: 20261017_0900_initial_compliance_schema
Revises:
Create Date: 2026-10-17 09:00:00.000000

Creates the tables read and written by the compliance core:
- tenants, users, roles, tenant_users: tenancy and role membership
- clients, document_types, documents, document_versions: client documents
- filing_types, filings, tasks: regulatory filings and assigned work
- compliance_rule_sets, compliance_rules, compliance_scores: rules and the
  latest score per client
- notifications, reminder_markers: reminders and their dedupe markers
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = '20261017_0900_initial_compliance_schema'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _id():
    return sa.Column('id', sa.Uuid(), nullable=False)


def _tenant_column(table: str):
    return sa.Column(
        'tenant_id',
        sa.Uuid(),
        sa.ForeignKey('tenants.id', ondelete='CASCADE', name=f'fk_{table}_tenant_id_tenants'),
        nullable=False,
    )


def upgrade() -> None:
    """Create the compliance tables."""

    # JSONB on PostgreSQL, JSON elsewhere
    json_type = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')

    document_status = sa.Enum('VALID', 'PENDING_REVIEW', 'REJECTED', 'ARCHIVED', name='documentstatus')
    filing_status = sa.Enum(
        'DRAFT', 'PREPARED', 'SUBMITTED', 'APPROVED', 'OVERDUE', 'REJECTED',
        name='filingstatus',
    )
    rule_type = sa.Enum('DOCUMENT_REQUIRED', 'FILING_REQUIRED', name='ruletype')
    compliance_level = sa.Enum('GREEN', 'AMBER', 'RED', name='compliancelevel')
    notification_type = sa.Enum('EMAIL', 'IN_APP', 'SMS', name='notificationtype')
    channel_status = sa.Enum('PENDING', 'SENT', 'FAILED', name='channelstatus')
    urgency_level = sa.Enum('URGENT', 'HIGH', 'NORMAL', name='urgencylevel')
    entity_kind = sa.Enum('FILING', 'DOCUMENT', name='entitykind')

    # ===========================================
    # TENANCY
    # ===========================================

    op.create_table(
        'tenants',
        _id(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_tenants'),
        sa.UniqueConstraint('slug', name='uq_tenants_slug'),
    )

    op.create_table(
        'users',
        _id(),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
        sa.UniqueConstraint('email', name='uq_users_email'),
    )
    op.create_index('ix_users_email', 'users', ['email'])

    op.create_table(
        'roles',
        _id(),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.String(255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_roles'),
        sa.UniqueConstraint('name', name='uq_roles_name'),
    )

    op.create_table(
        'tenant_users',
        _id(),
        _tenant_column('tenant_users'),
        sa.Column(
            'user_id', sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='CASCADE', name='fk_tenant_users_user_id_users'),
            nullable=False,
        ),
        sa.Column(
            'role_id', sa.Uuid(),
            sa.ForeignKey('roles.id', ondelete='RESTRICT', name='fk_tenant_users_role_id_roles'),
            nullable=False,
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_tenant_users'),
        sa.UniqueConstraint('tenant_id', 'user_id', name='uq_tenant_users_tenant_user'),
    )
    op.create_index('ix_tenant_users_tenant_id', 'tenant_users', ['tenant_id'])
    op.create_index('ix_tenant_users_user_id', 'tenant_users', ['user_id'])

    # ===========================================
    # CLIENTS & DOCUMENTS
    # ===========================================

    op.create_table(
        'clients',
        _id(),
        _tenant_column('clients'),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('type', sa.String(50), nullable=False, comment='individual, company, partnership, ngo...'),
        sa.Column('sector', sa.String(100), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_clients'),
    )
    op.create_index('ix_clients_tenant_id', 'clients', ['tenant_id'])

    op.create_table(
        'document_types',
        _id(),
        _tenant_column('document_types'),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('category', sa.String(100), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_document_types'),
    )
    op.create_index('ix_document_types_tenant_id', 'document_types', ['tenant_id'])

    op.create_table(
        'documents',
        _id(),
        _tenant_column('documents'),
        sa.Column(
            'client_id', sa.Uuid(),
            sa.ForeignKey('clients.id', ondelete='CASCADE', name='fk_documents_client_id_clients'),
            nullable=False,
        ),
        sa.Column(
            'document_type_id', sa.Uuid(),
            sa.ForeignKey('document_types.id', ondelete='RESTRICT', name='fk_documents_document_type_id_document_types'),
            nullable=False,
        ),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('status', document_status, nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_documents'),
    )
    op.create_index('ix_documents_tenant_id', 'documents', ['tenant_id'])
    op.create_index('ix_documents_client_id', 'documents', ['client_id'])
    op.create_index('ix_documents_status', 'documents', ['status'])

    op.create_table(
        'document_versions',
        _id(),
        sa.Column(
            'document_id', sa.Uuid(),
            sa.ForeignKey('documents.id', ondelete='CASCADE', name='fk_document_versions_document_id_documents'),
            nullable=False,
        ),
        sa.Column('version_number', sa.Integer(), nullable=False),
        sa.Column('issue_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expiry_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('storage_key', sa.String(500), nullable=True,
                  comment='Object storage key (managed by the storage service)'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_document_versions'),
    )
    op.create_index('ix_document_versions_document_id', 'document_versions', ['document_id'])

    # ===========================================
    # FILINGS & TASKS
    # ===========================================

    op.create_table(
        'filing_types',
        _id(),
        _tenant_column('filing_types'),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('code', sa.String(50), nullable=True),
        sa.Column('authority', sa.String(255), nullable=True),
        sa.Column('frequency', sa.String(50), nullable=True, comment='monthly, quarterly, annual, one_off'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_filing_types'),
    )
    op.create_index('ix_filing_types_tenant_id', 'filing_types', ['tenant_id'])

    op.create_table(
        'filings',
        _id(),
        _tenant_column('filings'),
        sa.Column(
            'client_id', sa.Uuid(),
            sa.ForeignKey('clients.id', ondelete='CASCADE', name='fk_filings_client_id_clients'),
            nullable=False,
        ),
        sa.Column(
            'filing_type_id', sa.Uuid(),
            sa.ForeignKey('filing_types.id', ondelete='RESTRICT', name='fk_filings_filing_type_id_filing_types'),
            nullable=False,
        ),
        sa.Column('status', filing_status, nullable=False),
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=True, comment='Filing deadline'),
        sa.Column('period_label', sa.String(100), nullable=True),
        sa.Column('internal_notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_filings'),
    )
    op.create_index('ix_filings_tenant_id', 'filings', ['tenant_id'])
    op.create_index('ix_filings_client_id', 'filings', ['client_id'])
    op.create_index('ix_filings_status', 'filings', ['status'])
    op.create_index('ix_filings_period_end', 'filings', ['period_end'])

    op.create_table(
        'tasks',
        _id(),
        _tenant_column('tasks'),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column(
            'filing_id', sa.Uuid(),
            sa.ForeignKey('filings.id', ondelete='SET NULL', name='fk_tasks_filing_id_filings'),
            nullable=True,
        ),
        sa.Column(
            'document_id', sa.Uuid(),
            sa.ForeignKey('documents.id', ondelete='SET NULL', name='fk_tasks_document_id_documents'),
            nullable=True,
        ),
        sa.Column(
            'assigned_to_id', sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='SET NULL', name='fk_tasks_assigned_to_id_users'),
            nullable=True,
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_tasks'),
    )
    op.create_index('ix_tasks_tenant_id', 'tasks', ['tenant_id'])
    op.create_index('ix_tasks_filing_id', 'tasks', ['filing_id'])
    op.create_index('ix_tasks_document_id', 'tasks', ['document_id'])

    # ===========================================
    # COMPLIANCE RULES & SCORES
    # ===========================================

    op.create_table(
        'compliance_rule_sets',
        _id(),
        _tenant_column('compliance_rule_sets'),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('applies_to', json_type, nullable=True, comment='Applicability filters (clientTypes, sectors)'),
        sa.Column('active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_compliance_rule_sets'),
    )
    op.create_index('ix_compliance_rule_sets_tenant_id', 'compliance_rule_sets', ['tenant_id'])
    op.create_index('ix_compliance_rule_sets_active', 'compliance_rule_sets', ['active'])

    op.create_table(
        'compliance_rules',
        _id(),
        sa.Column(
            'rule_set_id', sa.Uuid(),
            sa.ForeignKey(
                'compliance_rule_sets.id', ondelete='CASCADE',
                name='fk_compliance_rules_rule_set_id_compliance_rule_sets',
            ),
            nullable=False,
        ),
        sa.Column('rule_type', rule_type, nullable=False),
        sa.Column('condition', json_type, nullable=True, comment='documentType, or filingType + frequency'),
        sa.Column('weight', sa.Float(), nullable=False, comment='Contribution unit in [0, 1]'),
        sa.Column('description', sa.String(500), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_compliance_rules'),
    )
    op.create_index('ix_compliance_rules_rule_set_id', 'compliance_rules', ['rule_set_id'])

    op.create_table(
        'compliance_scores',
        _id(),
        _tenant_column('compliance_scores'),
        sa.Column(
            'client_id', sa.Uuid(),
            sa.ForeignKey('clients.id', ondelete='CASCADE', name='fk_compliance_scores_client_id_clients'),
            nullable=False,
        ),
        sa.Column('score_value', sa.Integer(), nullable=False),
        sa.Column('level', compliance_level, nullable=False),
        sa.Column('missing_count', sa.Integer(), nullable=False),
        sa.Column('expiring_count', sa.Integer(), nullable=False, comment='Expiring plus expired documents'),
        sa.Column('overdue_filings_count', sa.Integer(), nullable=False),
        sa.Column('last_calculated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('breakdown', json_type, nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_compliance_scores'),
        sa.UniqueConstraint('tenant_id', 'client_id', name='uq_compliance_scores_tenant_client'),
    )
    op.create_index('ix_compliance_scores_tenant_id', 'compliance_scores', ['tenant_id'])
    op.create_index('ix_compliance_scores_client_id', 'compliance_scores', ['client_id'])
    op.create_index('ix_compliance_scores_level', 'compliance_scores', ['level'])

    # ===========================================
    # NOTIFICATIONS & REMINDER MARKERS
    # ===========================================

    op.create_table(
        'notifications',
        _id(),
        _tenant_column('notifications'),
        sa.Column(
            'recipient_user_id', sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='CASCADE', name='fk_notifications_recipient_user_id_users'),
            nullable=False,
        ),
        sa.Column('type', notification_type, nullable=False),
        sa.Column('channel_status', channel_status, nullable=False),
        sa.Column('urgency', urgency_level, nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            'entity_kind',
            sa.Enum('FILING', 'DOCUMENT', name='notification_entity_kind', native_enum=False, length=20),
            nullable=True,
        ),
        sa.Column('entity_id', sa.Uuid(), nullable=True),
        sa.Column('due_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('threshold_days', sa.Integer(), nullable=True),
        sa.Column('email_queued_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('email_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('email_error', sa.Text(), nullable=True),
        sa.Column('metadata', json_type, nullable=True, comment='Structured reminder metadata'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_notifications'),
        sa.UniqueConstraint(
            'recipient_user_id', 'entity_kind', 'entity_id', 'due_at', 'threshold_days',
            name='uq_notifications_reminder',
        ),
    )
    op.create_index('ix_notifications_tenant_id', 'notifications', ['tenant_id'])
    op.create_index('ix_notifications_recipient_user_id', 'notifications', ['recipient_user_id'])
    op.create_index('ix_notifications_channel_status', 'notifications', ['channel_status'])
    op.create_index('ix_notifications_is_read', 'notifications', ['is_read'])
    op.create_index('ix_notifications_entity_id', 'notifications', ['entity_id'])

    op.create_table(
        'reminder_markers',
        _id(),
        _tenant_column('reminder_markers'),
        sa.Column('entity_kind', entity_kind, nullable=False),
        sa.Column('entity_id', sa.Uuid(), nullable=False),
        sa.Column('due_at', sa.DateTime(timezone=True), nullable=False, comment='Deadline the marker refers to'),
        sa.Column('last_threshold_days', sa.Integer(), nullable=False),
        sa.Column('last_fired_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_reminder_markers'),
        sa.UniqueConstraint('entity_kind', 'entity_id', name='uq_reminder_markers_entity'),
    )
    op.create_index('ix_reminder_markers_tenant_id', 'reminder_markers', ['tenant_id'])


def downgrade() -> None:
    """Drop the compliance tables."""
    for table in (
        'reminder_markers',
        'notifications',
        'compliance_scores',
        'compliance_rules',
        'compliance_rule_sets',
        'tasks',
        'filings',
        'filing_types',
        'document_versions',
        'documents',
        'document_types',
        'clients',
        'tenant_users',
        'roles',
        'users',
        'tenants',
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for enum_name in (
        'entitykind', 'urgencylevel', 'channelstatus', 'notificationtype',
        'compliancelevel', 'ruletype', 'filingstatus', 'documentstatus',
    ):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)
