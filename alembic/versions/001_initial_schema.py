"""Initial PodcastFlow core schema

Revision ID: 001_initial_schema
Revises: 
Create Date: 2026-10-17

Tables:
- Tenancy: organizations, users
- Catalog: shows, episodes, episode_inventory, inventory_alerts
- Sales: advertisers, categories, competitive_groups, advertiser_categories, campaigns, campaign_approvals
- Reservations: reservations, reservation_items, reservation_status_history, orders, order_items, bulk_schedule_idempotency
- Workflow: workflow_triggers, trigger_execution_logs, workflow_automation_settings
- Notifications: notification_queue, notification_deliveries, notification_templates,
  user_notification_preferences, notifications, webhook_outbox
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def timestamps(updated: bool = True):
    columns = [sa.Column('created_at', sa.DateTime, server_default=sa.func.now())]
    if updated:
        columns.append(sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()))
    return columns


def org_fk(nullable: bool = False):
    return sa.Column(
        'organization_id', sa.String(36),
        sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=nullable
    )


def upgrade() -> None:
    """Create all database tables."""

    # ===========================================
    # 1. TENANCY
    # ===========================================
    op.create_table(
        'organizations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False, unique=True),
        sa.Column('settings', sa.JSON, nullable=True),
        *timestamps(),
    )

    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        org_fk(),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(200), nullable=True),
        sa.Column('role', sa.String(30), nullable=False, server_default='sales'),
        sa.Column('is_active', sa.Boolean, server_default=sa.true()),
        *timestamps(updated=False),
    )
    op.create_index('ix_user_org_role', 'users', ['organization_id', 'role'])

    # ===========================================
    # 2. CATALOG / INVENTORY
    # ===========================================
    op.create_table(
        'shows',
        sa.Column('id', sa.String(36), primary_key=True),
        org_fk(),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('category', sa.String(50), nullable=True),
        sa.Column('spot_thresholds', sa.JSON, nullable=True),
        sa.Column('producer_id', sa.String(36), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('talent_id', sa.String(36), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('pre_roll_rate', sa.Numeric(10, 2), nullable=True),
        sa.Column('mid_roll_rate', sa.Numeric(10, 2), nullable=True),
        sa.Column('post_roll_rate', sa.Numeric(10, 2), nullable=True),
        *timestamps(),
    )

    op.create_table(
        'episodes',
        sa.Column('id', sa.String(36), primary_key=True),
        org_fk(),
        sa.Column('show_id', sa.String(36), sa.ForeignKey('shows.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(300), nullable=False),
        sa.Column('air_date', sa.Date, nullable=False),
        sa.Column('length_minutes', sa.Integer, nullable=True),
        sa.Column('status', sa.String(20), server_default='scheduled'),
        *timestamps(),
    )
    op.create_index('ix_episode_show_air_date', 'episodes', ['show_id', 'air_date'])

    counter_columns = []
    checks = []
    for placement, slots in (('pre_roll', 1), ('mid_roll', 2), ('post_roll', 1)):
        for suffix, default in (('slots', slots), ('available', slots), ('reserved', 0), ('booked', 0)):
            column = f'{placement}_{suffix}'
            counter_columns.append(sa.Column(column, sa.Integer, nullable=False, server_default=str(default)))
            checks.append(sa.CheckConstraint(f'{column} >= 0', name=f'ck_inventory_{column}_non_negative'))

    op.create_table(
        'episode_inventory',
        sa.Column('id', sa.String(36), primary_key=True),
        org_fk(),
        sa.Column('episode_id', sa.String(36), sa.ForeignKey('episodes.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('show_id', sa.String(36), sa.ForeignKey('shows.id', ondelete='CASCADE'), nullable=False),
        sa.Column('air_date', sa.Date, nullable=False),
        *counter_columns,
        sa.Column('pre_roll_price', sa.Numeric(10, 2), nullable=True),
        sa.Column('mid_roll_price', sa.Numeric(10, 2), nullable=True),
        sa.Column('post_roll_price', sa.Numeric(10, 2), nullable=True),
        sa.Column('calculated_from_length', sa.Boolean, server_default=sa.false()),
        sa.Column('spot_configuration', sa.JSON, nullable=True),
        *timestamps(),
        *checks,
    )
    op.create_index('ix_inventory_show_air_date', 'episode_inventory', ['show_id', 'air_date'])
    op.create_index('ix_inventory_org_air_date', 'episode_inventory', ['organization_id', 'air_date'])

    op.create_table(
        'inventory_alerts',
        sa.Column('id', sa.String(36), primary_key=True),
        org_fk(),
        sa.Column('alert_type', sa.String(50), nullable=False),
        sa.Column('severity', sa.String(20), server_default='high'),
        sa.Column('status', sa.String(20), server_default='open'),
        sa.Column('episode_id', sa.String(36), nullable=True),
        sa.Column('show_id', sa.String(36), nullable=True),
        sa.Column('placement_type', sa.String(20), nullable=True),
        sa.Column('message', sa.Text, nullable=True),
        sa.Column('details', sa.JSON, nullable=True),
        sa.Column('acknowledged_at', sa.DateTime, nullable=True),
        sa.Column('acknowledged_by', sa.String(36), nullable=True),
        sa.Column('resolved_at', sa.DateTime, nullable=True),
        sa.Column('resolved_by', sa.String(36), nullable=True),
        sa.Column('resolution_notes', sa.Text, nullable=True),
        *timestamps(),
    )
    op.create_index('ix_inventory_alert_status', 'inventory_alerts', ['organization_id', 'status', 'created_at'])
    op.create_index('ix_inventory_alert_episode', 'inventory_alerts', ['episode_id', 'placement_type'])

    # ===========================================
    # 3. ADVERTISERS / CAMPAIGNS
    # ===========================================
    op.create_table(
        'advertisers',
        sa.Column('id', sa.String(36), primary_key=True),
        org_fk(),
        sa.Column('name', sa.String(200), nullable=False),
        *timestamps(updated=False),
    )

    op.create_table(
        'categories',
        sa.Column('id', sa.String(36), primary_key=True),
        org_fk(),
        sa.Column('name', sa.String(100), nullable=False),
    )

    op.create_table(
        'competitive_groups',
        sa.Column('id', sa.String(36), primary_key=True),
        org_fk(),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('conflict_mode', sa.String(10), nullable=True),
    )

    op.create_table(
        'advertiser_categories',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('advertiser_id', sa.String(36), sa.ForeignKey('advertisers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('category_id', sa.String(36), sa.ForeignKey('categories.id', ondelete='CASCADE'), nullable=False),
        sa.Column('competitive_group_id', sa.String(36),
                  sa.ForeignKey('competitive_groups.id', ondelete='SET NULL'), nullable=True),
        sa.UniqueConstraint('advertiser_id', 'category_id', name='uq_advertiser_category'),
    )
    op.create_index('ix_advertiser_category_group', 'advertiser_categories', ['competitive_group_id'])

    op.create_table(
        'campaigns',
        sa.Column('id', sa.String(36), primary_key=True),
        org_fk(),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('advertiser_id', sa.String(36), sa.ForeignKey('advertisers.id', ondelete='SET NULL'), nullable=True),
        sa.Column('agency_id', sa.String(36), nullable=True),
        sa.Column('seller_id', sa.String(36), nullable=True),
        sa.Column('status', sa.String(20), server_default='draft'),
        sa.Column('probability', sa.Integer, server_default='10'),
        sa.Column('budget', sa.Numeric(12, 2), nullable=True),
        sa.Column('start_date', sa.Date, nullable=True),
        sa.Column('end_date', sa.Date, nullable=True),
        sa.Column('has_competitive_conflicts', sa.Boolean, server_default=sa.false()),
        sa.Column('competitive_conflicts', sa.JSON, nullable=True),
        sa.Column('conflict_override', sa.Boolean, server_default=sa.false()),
        sa.Column('conflict_override_reason', sa.Text, nullable=True),
        sa.Column('conflict_override_by', sa.String(36), nullable=True),
        sa.Column('conflict_override_at', sa.DateTime, nullable=True),
        *timestamps(),
    )
    op.create_index('ix_campaign_org_status', 'campaigns', ['organization_id', 'status'])
    op.create_index('ix_campaign_dates', 'campaigns', ['start_date', 'end_date'])

    op.create_table(
        'campaign_approvals',
        sa.Column('id', sa.String(36), primary_key=True),
        org_fk(),
        sa.Column('campaign_id', sa.String(36), sa.ForeignKey('campaigns.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(20), server_default='pending'),
        sa.Column('required_roles', sa.JSON, nullable=True),
        sa.Column('reason', sa.Text, nullable=True),
        sa.Column('trigger_id', sa.String(36), nullable=True),
        sa.Column('requested_by', sa.String(36), nullable=True),
        sa.Column('requested_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('decided_by', sa.String(36), nullable=True),
        sa.Column('decided_at', sa.DateTime, nullable=True),
        sa.Column('decision_notes', sa.Text, nullable=True),
    )
    op.create_index('ix_campaign_approval_status', 'campaign_approvals', ['campaign_id', 'status'])

    # ===========================================
    # 4. RESERVATIONS / ORDERS
    # ===========================================
    op.create_table(
        'reservations',
        sa.Column('id', sa.String(36), primary_key=True),
        org_fk(),
        sa.Column('reservation_number', sa.String(30), nullable=False, unique=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='held'),
        sa.Column('hold_duration', sa.Integer, nullable=False, server_default='48'),
        sa.Column('expires_at', sa.DateTime, nullable=False),
        sa.Column('priority', sa.String(10), nullable=False, server_default='normal'),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('source', sa.String(30), server_default='web'),
        sa.Column('advertiser_id', sa.String(36), sa.ForeignKey('advertisers.id', ondelete='SET NULL'), nullable=True),
        sa.Column('agency_id', sa.String(36), nullable=True),
        sa.Column('campaign_id', sa.String(36), sa.ForeignKey('campaigns.id', ondelete='SET NULL'), nullable=True),
        sa.Column('order_id', sa.String(36), nullable=True),
        sa.Column('created_by', sa.String(36), nullable=True),
        sa.Column('confirmed_at', sa.DateTime, nullable=True),
        sa.Column('confirmed_by', sa.String(36), nullable=True),
        sa.Column('released_at', sa.DateTime, nullable=True),
        sa.Column('released_by', sa.String(36), nullable=True),
        sa.Column('release_reason', sa.Text, nullable=True),
        *timestamps(),
    )
    op.create_index('ix_reservation_status_expires', 'reservations', ['status', 'expires_at'])
    op.create_index('ix_reservation_org_status', 'reservations', ['organization_id', 'status'])
    op.create_index('ix_reservation_campaign', 'reservations', ['campaign_id'])

    op.create_table(
        'reservation_items',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('reservation_id', sa.String(36), sa.ForeignKey('reservations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('show_id', sa.String(36), sa.ForeignKey('shows.id', ondelete='CASCADE'), nullable=False),
        sa.Column('episode_id', sa.String(36), sa.ForeignKey('episodes.id', ondelete='SET NULL'), nullable=True),
        sa.Column('air_date', sa.Date, nullable=False),
        sa.Column('placement_type', sa.String(20), nullable=False),
        sa.Column('spot_number', sa.Integer, nullable=False, server_default='1'),
        sa.Column('length', sa.Integer, nullable=False, server_default='30'),
        sa.Column('rate', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text, nullable=True),
        *timestamps(updated=False),
    )
    op.create_index('ix_reservation_item_episode', 'reservation_items', ['episode_id', 'placement_type'])
    op.create_index('ix_reservation_item_show_date', 'reservation_items', ['show_id', 'air_date'])

    op.create_table(
        'reservation_status_history',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('reservation_id', sa.String(36), sa.ForeignKey('reservations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('previous_status', sa.String(20), nullable=True),
        sa.Column('new_status', sa.String(20), nullable=False),
        sa.Column('reason', sa.Text, nullable=True),
        sa.Column('changed_by', sa.String(36), nullable=True),
        sa.Column('changed_at', sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        'orders',
        sa.Column('id', sa.String(36), primary_key=True),
        org_fk(),
        sa.Column('order_number', sa.String(30), nullable=False),
        sa.Column('reservation_id', sa.String(36), sa.ForeignKey('reservations.id', ondelete='SET NULL'), nullable=True),
        sa.Column('campaign_id', sa.String(36), nullable=True),
        sa.Column('advertiser_id', sa.String(36), nullable=True),
        sa.Column('agency_id', sa.String(36), nullable=True),
        sa.Column('status', sa.String(20), server_default='confirmed'),
        sa.Column('total_amount', sa.Numeric(12, 2), server_default='0'),
        sa.Column('net_amount', sa.Numeric(12, 2), server_default='0'),
        sa.Column('submitted_by', sa.String(36), nullable=True),
        sa.Column('submitted_at', sa.DateTime, server_default=sa.func.now()),
        *timestamps(),
        sa.UniqueConstraint('organization_id', 'order_number', name='uq_order_org_number'),
    )
    op.create_index('ix_order_org_created', 'orders', ['organization_id', 'created_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('order_id', sa.String(36), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('show_id', sa.String(36), nullable=False),
        sa.Column('episode_id', sa.String(36), nullable=True),
        sa.Column('air_date', sa.Date, nullable=False),
        sa.Column('placement_type', sa.String(20), nullable=False),
        sa.Column('spot_number', sa.Integer, server_default='1'),
        sa.Column('length', sa.Integer, server_default='30'),
        sa.Column('rate', sa.Numeric(10, 2), server_default='0'),
        sa.Column('actual_rate', sa.Numeric(10, 2), server_default='0'),
        *timestamps(updated=False),
    )

    op.create_table(
        'bulk_schedule_idempotency',
        sa.Column('id', sa.String(36), primary_key=True),
        org_fk(),
        sa.Column('key', sa.String(255), nullable=False),
        sa.Column('result', sa.JSON, nullable=False),
        sa.Column('reservation_id', sa.String(36), nullable=True),
        sa.Column('created_by', sa.String(36), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('expires_at', sa.DateTime, nullable=False),
        sa.UniqueConstraint('organization_id', 'key', name='uq_bulk_idempotency_org_key'),
    )
    op.create_index('ix_bulk_idempotency_expires', 'bulk_schedule_idempotency', ['expires_at'])

    # ===========================================
    # 5. WORKFLOW
    # ===========================================
    op.create_table(
        'workflow_triggers',
        sa.Column('id', sa.String(36), primary_key=True),
        org_fk(),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('event', sa.String(50), nullable=False),
        sa.Column('condition', sa.JSON, nullable=True),
        sa.Column('actions', sa.JSON, nullable=False),
        sa.Column('is_enabled', sa.Boolean, server_default=sa.true()),
        sa.Column('priority', sa.Integer, server_default='100'),
        sa.Column('execution_count', sa.Integer, server_default='0'),
        sa.Column('last_executed_at', sa.DateTime, nullable=True),
        sa.Column('created_by', sa.String(36), nullable=True),
        sa.Column('updated_by', sa.String(36), nullable=True),
        *timestamps(),
    )
    op.create_index('ix_trigger_org_event', 'workflow_triggers', ['organization_id', 'event', 'is_enabled'])

    op.create_table(
        'trigger_execution_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('organization_id', sa.String(36), nullable=False),
        sa.Column('trigger_id', sa.String(36), sa.ForeignKey('workflow_triggers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=True),
        sa.Column('entity_id', sa.String(36), nullable=True),
        sa.Column('event', sa.String(50), nullable=False),
        sa.Column('status', sa.String(20), server_default='running'),
        sa.Column('dedupe_key', sa.String(200), nullable=True),
        sa.Column('condition', sa.JSON, nullable=True),
        sa.Column('actions', sa.JSON, nullable=True),
        sa.Column('result', sa.JSON, nullable=True),
        sa.Column('error', sa.Text, nullable=True),
        sa.Column('executed_by', sa.String(36), nullable=True),
        sa.Column('executed_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('dedupe_key', name='uq_trigger_execution_dedupe'),
    )
    op.create_index('ix_trigger_execution_lookup', 'trigger_execution_logs', ['trigger_id', 'entity_id', 'event'])

    op.create_table(
        'workflow_automation_settings',
        sa.Column('id', sa.String(36), primary_key=True),
        org_fk(),
        sa.Column('key', sa.String(100), nullable=False),
        sa.Column('value', sa.JSON, nullable=False),
        sa.Column('updated_by', sa.String(36), nullable=True),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('organization_id', 'key', name='uq_workflow_setting_org_key'),
    )

    # ===========================================
    # 6. NOTIFICATIONS
    # ===========================================
    op.create_table(
        'notification_queue',
        sa.Column('id', sa.String(36), primary_key=True),
        org_fk(),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('event_payload', sa.JSON, nullable=False),
        sa.Column('recipient_ids', sa.JSON, nullable=False),
        sa.Column('priority', sa.Integer, nullable=False, server_default='5'),
        sa.Column('scheduled_for', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer, nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer, nullable=False, server_default='3'),
        sa.Column('last_error', sa.Text, nullable=True),
        sa.Column('metadata', sa.JSON, nullable=True),
        sa.Column('claimed_at', sa.DateTime, nullable=True),
        sa.Column('processed_at', sa.DateTime, nullable=True),
        *timestamps(),
    )
    op.create_index('ix_notification_queue_poll', 'notification_queue',
                    ['status', 'scheduled_for', 'priority', 'created_at'])
    op.create_index('ix_notification_queue_org', 'notification_queue', ['organization_id', 'status'])

    op.create_table(
        'notification_deliveries',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('idempotency_key', sa.String(64), nullable=False),
        org_fk(),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('event_payload', sa.JSON, nullable=True),
        sa.Column('recipient_id', sa.String(36), nullable=False),
        sa.Column('channel', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='sent'),
        sa.Column('attempts', sa.Integer, nullable=False, server_default='1'),
        sa.Column('error', sa.Text, nullable=True),
        sa.Column('metadata', sa.JSON, nullable=True),
        sa.Column('sent_at', sa.DateTime, nullable=True),
        *timestamps(),
        sa.UniqueConstraint('idempotency_key', name='uq_notification_delivery_key'),
    )
    op.create_index('ix_notification_delivery_recipient', 'notification_deliveries',
                    ['organization_id', 'recipient_id', 'created_at'])

    op.create_table(
        'notification_templates',
        sa.Column('id', sa.String(36), primary_key=True),
        org_fk(nullable=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('channel', sa.String(20), nullable=False),
        sa.Column('subject', sa.String(300), nullable=True),
        sa.Column('body', sa.Text, nullable=False),
        sa.Column('variables', sa.JSON, nullable=True),
        sa.Column('is_default', sa.Boolean, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean, server_default=sa.true()),
        *timestamps(),
    )
    op.create_index('ix_notification_template_lookup', 'notification_templates',
                    ['event_type', 'channel', 'organization_id'])

    op.create_table(
        'user_notification_preferences',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        org_fk(),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('enabled', sa.Boolean, server_default=sa.true()),
        sa.Column('channels', sa.JSON, nullable=True),
        sa.Column('quiet_hours', sa.JSON, nullable=True),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'organization_id', 'event_type', name='uq_user_notification_pref'),
    )

    op.create_table(
        'notifications',
        sa.Column('id', sa.String(36), primary_key=True),
        org_fk(),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(100), nullable=False),
        sa.Column('title', sa.String(300), nullable=False),
        sa.Column('message', sa.Text, nullable=True),
        sa.Column('action_url', sa.String(500), nullable=True),
        sa.Column('priority', sa.String(20), server_default='normal'),
        sa.Column('entity_type', sa.String(50), nullable=True),
        sa.Column('entity_id', sa.String(36), nullable=True),
        sa.Column('is_read', sa.Boolean, server_default=sa.false()),
        sa.Column('read_at', sa.DateTime, nullable=True),
        *timestamps(updated=False),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_type', 'notifications', ['type'])
    op.create_index('ix_notifications_is_read', 'notifications', ['is_read'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])

    op.create_table(
        'webhook_outbox',
        sa.Column('id', sa.String(36), primary_key=True),
        org_fk(),
        sa.Column('channel', sa.String(20), nullable=False, server_default='webhook'),
        sa.Column('event_type', sa.String(100), nullable=True),
        sa.Column('url', sa.String(1000), nullable=False),
        sa.Column('payload', sa.JSON, nullable=False),
        sa.Column('headers', sa.JSON, nullable=True),
        sa.Column('delivery_id', sa.String(36), nullable=True),
        sa.Column('trigger_id', sa.String(36), nullable=True),
        sa.Column('status', sa.String(20), server_default='pending'),
        sa.Column('attempts', sa.Integer, server_default='0'),
        sa.Column('max_attempts', sa.Integer, server_default='5'),
        sa.Column('next_attempt_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('last_error', sa.Text, nullable=True),
        sa.Column('response_status', sa.Integer, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_webhook_outbox_status_next', 'webhook_outbox', ['status', 'next_attempt_at'])
    op.create_index('ix_webhook_outbox_org', 'webhook_outbox', ['organization_id', 'created_at'])


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    for table in (
        'webhook_outbox', 'notifications', 'user_notification_preferences', 'notification_templates',
        'notification_deliveries', 'notification_queue',
        'workflow_automation_settings', 'trigger_execution_logs', 'workflow_triggers',
        'bulk_schedule_idempotency', 'order_items', 'orders',
        'reservation_status_history', 'reservation_items', 'reservations',
        'campaign_approvals', 'campaigns', 'advertiser_categories', 'competitive_groups', 'categories', 'advertisers',
        'inventory_alerts', 'episode_inventory', 'episodes', 'shows',
        'users', 'organizations',
    ):
        op.drop_table(table)
