"""Create reconciliation engine schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-17

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=True):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    op.create_table('tenant',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('user',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('email', sa.String(length=120), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenant.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'email', name='uq_user_tenant_email')
    )
    op.create_index('ix_user_tenant_id', 'user', ['tenant_id'])

    op.create_table('queue',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('color', sa.String(length=20), nullable=False),
        sa.Column('greeting_message', sa.Text(), nullable=True),
        sa.Column('ai_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('ai_mode', sa.String(length=20), nullable=False, server_default='triage'),
        sa.Column('ai_auto_reply', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('ai_prompt', sa.Text(), nullable=True),
        sa.Column('ai_webhook_url', sa.String(length=500), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenant.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'name', name='uq_queue_tenant_name')
    )
    op.create_index('ix_queue_tenant_id', 'queue', ['tenant_id'])

    op.create_table('channel_connection',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('channel', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('greeting_message', sa.Text(), nullable=True),
        sa.Column('farewell_message', sa.Text(), nullable=True),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenant.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_channel_connection_tenant_id', 'channel_connection', ['tenant_id'])

    op.create_table('channel_connection_queue',
        sa.Column('channel_connection_id', sa.Integer(), nullable=False),
        sa.Column('queue_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['channel_connection_id'], ['channel_connection.id']),
        sa.ForeignKeyConstraint(['queue_id'], ['queue.id']),
        sa.PrimaryKeyConstraint('channel_connection_id', 'queue_id')
    )

    op.create_table('contact',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('number', sa.String(length=100), nullable=True),
        sa.Column('alt_id', sa.String(length=100), nullable=True),
        sa.Column('email', sa.String(length=200), nullable=False),
        sa.Column('profile_pic_url', sa.String(length=500), nullable=True),
        sa.Column('is_group', sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenant.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'number', name='uq_contact_tenant_number'),
        sa.UniqueConstraint('tenant_id', 'alt_id', name='uq_contact_tenant_alt_id')
    )
    op.create_index('ix_contact_tenant_id', 'contact', ['tenant_id'])

    op.create_table('contact_custom_field',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('contact_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(['contact_id'], ['contact.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_contact_custom_field_contact_id', 'contact_custom_field', ['contact_id'])

    op.create_table('tag',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('color', sa.String(length=20), nullable=False),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenant.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'name', name='uq_tag_tenant_name')
    )
    op.create_index('ix_tag_tenant_id', 'tag', ['tenant_id'])

    op.create_table('ticket',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('contact_id', sa.Integer(), nullable=False),
        sa.Column('channel_connection_id', sa.Integer(), nullable=True),
        sa.Column('queue_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('channel', sa.String(length=20), nullable=False),
        sa.Column('last_message', sa.Text(), nullable=True),
        sa.Column('unread_messages', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_group', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('lead_score', sa.Integer(), nullable=False, server_default='0'),
        _timestamp('sla_due_at'),
        _timestamp('first_human_response_at'),
        _timestamp('resolved_at'),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenant.id']),
        sa.ForeignKeyConstraint(['contact_id'], ['contact.id']),
        sa.ForeignKeyConstraint(['channel_connection_id'], ['channel_connection.id']),
        sa.ForeignKeyConstraint(['queue_id'], ['queue.id']),
        sa.ForeignKeyConstraint(['user_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_ticket_tenant_id', 'ticket', ['tenant_id'])
    op.create_index('ix_ticket_tenant_status', 'ticket', ['tenant_id', 'status'])
    op.create_index('ix_ticket_contact_connection_status', 'ticket',
                    ['contact_id', 'channel_connection_id', 'status'])
    op.create_index('ix_ticket_sla_due_at', 'ticket', ['sla_due_at'])

    op.create_table('ticket_tag',
        sa.Column('ticket_id', sa.Integer(), nullable=False),
        sa.Column('tag_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['ticket_id'], ['ticket.id']),
        sa.ForeignKeyConstraint(['tag_id'], ['tag.id']),
        sa.PrimaryKeyConstraint('ticket_id', 'tag_id')
    )

    op.create_table('message',
        sa.Column('id', sa.String(length=255), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('ticket_id', sa.Integer(), nullable=False),
        sa.Column('contact_id', sa.Integer(), nullable=True),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('from_me', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('media_type', sa.String(length=50), nullable=True),
        sa.Column('media_url', sa.String(length=500), nullable=True),
        sa.Column('ack', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quoted_msg_id', sa.String(length=255), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenant.id']),
        sa.ForeignKeyConstraint(['ticket_id'], ['ticket.id']),
        sa.ForeignKeyConstraint(['contact_id'], ['contact.id']),
        sa.ForeignKeyConstraint(['quoted_msg_id'], ['message.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_message_tenant_id', 'message', ['tenant_id'])
    op.create_index('ix_message_ticket_id', 'message', ['ticket_id'])
    op.create_index('ix_message_contact_id', 'message', ['contact_id'])
    op.create_index('ix_message_ticket_created', 'message', ['ticket_id', 'created_at'])

    op.create_table('ticket_event',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('ticket_id', sa.Integer(), nullable=False),
        sa.Column('queue_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=50), nullable=False),
        sa.Column('source', sa.String(length=30), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenant.id']),
        sa.ForeignKeyConstraint(['ticket_id'], ['ticket.id']),
        sa.ForeignKeyConstraint(['queue_id'], ['queue.id']),
        sa.ForeignKeyConstraint(['user_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_ticket_event_tenant_id', 'ticket_event', ['tenant_id'])
    op.create_index('ix_ticket_event_ticket_id', 'ticket_event', ['ticket_id'])
    op.create_index('ix_ticket_event_event_type', 'ticket_event', ['event_type'])

    op.create_table('setting',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=100), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenant.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'key', name='uq_setting_tenant_key')
    )
    op.create_index('ix_setting_tenant_id', 'setting', ['tenant_id'])

    op.create_table('scheduled_message',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('ticket_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('body', sa.Text(), nullable=False),
        _timestamp('send_at', nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        _timestamp('sent_at'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('message_id', sa.String(length=255), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenant.id']),
        sa.ForeignKeyConstraint(['ticket_id'], ['ticket.id']),
        sa.ForeignKeyConstraint(['user_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_scheduled_message_tenant_id', 'scheduled_message', ['tenant_id'])
    op.create_index('ix_scheduled_message_status_send_at', 'scheduled_message', ['status', 'send_at'])


def downgrade():
    op.drop_table('scheduled_message')
    op.drop_table('setting')
    op.drop_table('ticket_event')
    op.drop_table('message')
    op.drop_table('ticket_tag')
    op.drop_table('ticket')
    op.drop_table('tag')
    op.drop_table('contact_custom_field')
    op.drop_table('contact')
    op.drop_table('channel_connection_queue')
    op.drop_table('channel_connection')
    op.drop_table('queue')
    op.drop_table('user')
    op.drop_table('tenant')
