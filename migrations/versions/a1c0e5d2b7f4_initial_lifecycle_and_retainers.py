"""initial_lifecycle_and_retainers

Creates the core tables:
  - tenants, audit_logs, notifications
  - customers, customer_contacts, lifecycle_transitions, field_definitions
  - checklist_templates, checklist_template_items, checklist_instances, checklist_items
  - retainers, retainer_periods
  - time_entries, billing_rates, invoices, invoice_lines

Tables are created conditionally so the revision can be stamped onto a
database that already received them via db.create_all().

Revision ID: a1c0e5d2b7f4
Revises:
Create Date: 2026-10-05 09:12:40.518203
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'a1c0e5d2b7f4'
down_revision = None
branch_labels = None
depends_on = None

_LIVE_RETAINER = sa.text("status IN ('ACTIVE', 'PAUSED')")


def _tenant_fk():
    return sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE")


def _tenant_col():
    return sa.Column("tenant_id", sa.Integer(), nullable=False)


def upgrade():
    bind = op.get_bind()
    existing = set(sa_inspect(bind).get_table_names())

    # ── Platform ──────────────────────────────────────────────────────────
    if "tenants" not in existing:
        op.create_table(
            "tenants",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column(
                "settings", sa.JSON(), nullable=True,
                comment="dormancy_threshold_days, dormancy_grace_days, default_currency",
            ),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug"),
        )

    if "audit_logs" not in existing:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            _tenant_col(),
            sa.Column("entity_type", sa.String(length=40), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=64), nullable=False),
            sa.Column("diff_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            _tenant_fk(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"])
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])

    if "notifications" not in existing:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            _tenant_col(),
            sa.Column("recipient", sa.String(length=150), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=30), nullable=True),
            sa.Column("severity", sa.String(length=20), nullable=True),
            sa.Column("event_type", sa.String(length=80), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            sa.Column("payload", sa.JSON(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            _tenant_fk(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_tenant_id", "notifications", ["tenant_id"])
        op.create_index("ix_notifications_recipient", "notifications", ["recipient"])

    # ── Customers ─────────────────────────────────────────────────────────
    if "customers" not in existing:
        op.create_table(
            "customers",
            sa.Column("id", sa.Integer(), nullable=False),
            _tenant_col(),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("customer_type", sa.String(length=20), nullable=False),
            sa.Column(
                "lifecycle_status", sa.String(length=20), nullable=False,
                comment="PROSPECT | ONBOARDING | ACTIVE | DORMANT | OFFBOARDING | OFFBOARDED",
            ),
            sa.Column("lifecycle_status_changed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("lifecycle_status_changed_by", sa.String(length=64), nullable=True),
            sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("offboarded_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("custom_fields", sa.JSON(), nullable=True),
            sa.Column("created_by", sa.String(length=64), nullable=True),
            sa.Column(
                "version", sa.Integer(), nullable=False, server_default="1",
                comment="Optimistic lock counter.",
            ),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            _tenant_fk(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_customers_tenant_id", "customers", ["tenant_id"])
        op.create_index("ix_customers_tenant_status", "customers", ["tenant_id", "lifecycle_status"])

    if "customer_contacts" not in existing:
        op.create_table(
            "customer_contacts",
            sa.Column("id", sa.Integer(), nullable=False),
            _tenant_col(),
            sa.Column("customer_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("is_primary", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            _tenant_fk(),
            sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_customer_contacts_tenant_id", "customer_contacts", ["tenant_id"])
        op.create_index("ix_customer_contacts_customer_id", "customer_contacts", ["customer_id"])

    if "lifecycle_transitions" not in existing:
        op.create_table(
            "lifecycle_transitions",
            sa.Column("id", sa.Integer(), nullable=False),
            _tenant_col(),
            sa.Column("customer_id", sa.Integer(), nullable=False),
            sa.Column("from_status", sa.String(length=20), nullable=False),
            sa.Column("to_status", sa.String(length=20), nullable=False),
            sa.Column("event_type", sa.String(length=60), nullable=False),
            sa.Column("actor_id", sa.String(length=64), nullable=False),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("details", sa.JSON(), nullable=True),
            sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
            _tenant_fk(),
            sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_lifecycle_transitions_tenant_id", "lifecycle_transitions", ["tenant_id"])
        op.create_index("ix_lifecycle_transitions_customer_id", "lifecycle_transitions", ["customer_id"])

    if "field_definitions" not in existing:
        op.create_table(
            "field_definitions",
            sa.Column("id", sa.Integer(), nullable=False),
            _tenant_col(),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column(
                "field_type", sa.String(length=20), nullable=False,
                comment="TEXT | NUMBER | DATE | BOOLEAN | DROPDOWN | EMAIL | PHONE | URL | CURRENCY",
            ),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("options", sa.JSON(), nullable=True),
            sa.Column("required_for_contexts", sa.JSON(), nullable=True),
            sa.Column("sort_order", sa.Integer(), nullable=True),
            sa.Column("active", sa.Boolean(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            _tenant_fk(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("tenant_id", "entity_type", "slug", name="uq_field_definition_slug"),
        )
        op.create_index("ix_field_definitions_tenant_id", "field_definitions", ["tenant_id"])
        op.create_index("ix_field_definitions_entity", "field_definitions", ["tenant_id", "entity_type"])

    # ── Checklists ────────────────────────────────────────────────────────
    if "checklist_templates" not in existing:
        op.create_table(
            "checklist_templates",
            sa.Column("id", sa.Integer(), nullable=False),
            _tenant_col(),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("customer_type", sa.String(length=20), nullable=True),
            sa.Column("auto_instantiate", sa.Boolean(), nullable=False),
            sa.Column("active", sa.Boolean(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            _tenant_fk(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_checklist_templates_tenant_id", "checklist_templates", ["tenant_id"])

    if "checklist_template_items" not in existing:
        op.create_table(
            "checklist_template_items",
            sa.Column("id", sa.Integer(), nullable=False),
            _tenant_col(),
            sa.Column("template_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("sort_order", sa.Integer(), nullable=False),
            sa.Column("required", sa.Boolean(), nullable=False),
            sa.Column("requires_document", sa.Boolean(), nullable=False),
            sa.Column("required_document_label", sa.String(length=200), nullable=True),
            sa.Column("depends_on_item_id", sa.Integer(), nullable=True),
            _tenant_fk(),
            sa.ForeignKeyConstraint(["template_id"], ["checklist_templates.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(
                ["depends_on_item_id"], ["checklist_template_items.id"], ondelete="SET NULL",
            ),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_checklist_template_items_tenant_id", "checklist_template_items", ["tenant_id"])
        op.create_index("ix_checklist_template_items_template_id", "checklist_template_items", ["template_id"])

    if "checklist_instances" not in existing:
        op.create_table(
            "checklist_instances",
            sa.Column("id", sa.Integer(), nullable=False),
            _tenant_col(),
            sa.Column("customer_id", sa.Integer(), nullable=False),
            sa.Column("template_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_by", sa.String(length=64), nullable=True),
            _tenant_fk(),
            sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["template_id"], ["checklist_templates.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("customer_id", "template_id", name="uq_checklist_instance_customer_template"),
        )
        op.create_index("ix_checklist_instances_tenant_id", "checklist_instances", ["tenant_id"])
        op.create_index("ix_checklist_instances_customer_id", "checklist_instances", ["customer_id"])

    if "checklist_items" not in existing:
        op.create_table(
            "checklist_items",
            sa.Column("id", sa.Integer(), nullable=False),
            _tenant_col(),
            sa.Column("instance_id", sa.Integer(), nullable=False),
            sa.Column("customer_id", sa.Integer(), nullable=False),
            sa.Column("template_item_id", sa.Integer(), nullable=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("sort_order", sa.Integer(), nullable=False),
            sa.Column("required", sa.Boolean(), nullable=False),
            sa.Column("requires_document", sa.Boolean(), nullable=False),
            sa.Column("required_document_label", sa.String(length=200), nullable=True),
            sa.Column("depends_on_item_id", sa.Integer(), nullable=True),
            sa.Column(
                "status", sa.String(length=20), nullable=False,
                comment="PENDING | COMPLETED | SKIPPED",
            ),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_by", sa.String(length=64), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("document_id", sa.String(length=64), nullable=True),
            sa.Column("skip_reason", sa.Text(), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            _tenant_fk(),
            sa.ForeignKeyConstraint(["instance_id"], ["checklist_instances.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["depends_on_item_id"], ["checklist_items.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_checklist_items_tenant_id", "checklist_items", ["tenant_id"])
        op.create_index("ix_checklist_items_instance_id", "checklist_items", ["instance_id"])
        op.create_index("ix_checklist_items_customer_id", "checklist_items", ["customer_id"])

    # ── Retainers ─────────────────────────────────────────────────────────
    if "retainers" not in existing:
        op.create_table(
            "retainers",
            sa.Column("id", sa.Integer(), nullable=False),
            _tenant_col(),
            sa.Column("customer_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("type", sa.String(length=20), nullable=False, comment="HOUR_BANK | FIXED_FEE"),
            sa.Column("frequency", sa.String(length=20), nullable=False),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.Column("allocated_hours", sa.Numeric(precision=10, scale=2), nullable=True),
            sa.Column("period_fee", sa.Numeric(precision=12, scale=2), nullable=True),
            sa.Column("rollover_policy", sa.String(length=20), nullable=False),
            sa.Column("rollover_cap_hours", sa.Numeric(precision=10, scale=2), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, comment="ACTIVE | PAUSED | TERMINATED"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_by", sa.String(length=64), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            _tenant_fk(),
            sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_retainers_tenant_id", "retainers", ["tenant_id"])
        op.create_index("ix_retainers_customer_id", "retainers", ["customer_id"])
        op.create_index(
            "uq_retainers_one_live_per_customer", "retainers", ["customer_id"],
            unique=True, sqlite_where=_LIVE_RETAINER, postgresql_where=_LIVE_RETAINER,
        )

    if "retainer_periods" not in existing:
        op.create_table(
            "retainer_periods",
            sa.Column("id", sa.Integer(), nullable=False),
            _tenant_col(),
            sa.Column("retainer_id", sa.Integer(), nullable=False),
            sa.Column("period_start", sa.Date(), nullable=False),
            sa.Column("period_end", sa.Date(), nullable=False, comment="Inclusive."),
            sa.Column("status", sa.String(length=20), nullable=False, comment="OPEN | CLOSED"),
            sa.Column("allocated_hours", sa.Numeric(precision=10, scale=2), nullable=True),
            sa.Column("base_allocated_hours", sa.Numeric(precision=10, scale=2), nullable=True),
            sa.Column("rollover_hours_in", sa.Numeric(precision=10, scale=2), nullable=True),
            sa.Column("consumed_hours", sa.Numeric(precision=10, scale=2), nullable=True),
            sa.Column("overage_hours", sa.Numeric(precision=10, scale=2), nullable=True),
            sa.Column("rollover_hours_out", sa.Numeric(precision=10, scale=2), nullable=True),
            sa.Column("remaining_hours", sa.Numeric(precision=10, scale=2), nullable=True),
            sa.Column(
                "invoice_id", sa.Integer(), nullable=True,
                comment="Draft invoice written at close. No FK: invoices reference periods.",
            ),
            sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("closed_by", sa.String(length=64), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            _tenant_fk(),
            sa.ForeignKeyConstraint(["retainer_id"], ["retainers.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("retainer_id", "period_start", name="uq_retainer_period_start"),
        )
        op.create_index("ix_retainer_periods_tenant_id", "retainer_periods", ["tenant_id"])
        op.create_index("ix_retainer_periods_retainer_id", "retainer_periods", ["retainer_id"])
        op.create_index(
            "ix_retainer_periods_status_end", "retainer_periods", ["tenant_id", "status", "period_end"],
        )

    # ── Billing ───────────────────────────────────────────────────────────
    if "time_entries" not in existing:
        op.create_table(
            "time_entries",
            sa.Column("id", sa.Integer(), nullable=False),
            _tenant_col(),
            sa.Column("customer_id", sa.Integer(), nullable=False),
            sa.Column("member_id", sa.String(length=64), nullable=False),
            sa.Column("entry_date", sa.Date(), nullable=False),
            sa.Column("duration_minutes", sa.Integer(), nullable=False),
            sa.Column("billable", sa.Boolean(), nullable=False),
            sa.Column(
                "approval_status", sa.String(length=20), nullable=False,
                comment="PENDING | APPROVED | REJECTED",
            ),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            _tenant_fk(),
            sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_time_entries_tenant_id", "time_entries", ["tenant_id"])
        op.create_index("ix_time_entries_customer_date", "time_entries", ["customer_id", "entry_date"])

    if "billing_rates" not in existing:
        op.create_table(
            "billing_rates",
            sa.Column("id", sa.Integer(), nullable=False),
            _tenant_col(),
            sa.Column("customer_id", sa.Integer(), nullable=True, comment="NULL = org default."),
            sa.Column("member_id", sa.String(length=64), nullable=True),
            sa.Column("currency", sa.String(length=3), nullable=False),
            sa.Column("hourly_rate", sa.Numeric(precision=12, scale=2), nullable=False),
            sa.Column("effective_from", sa.Date(), nullable=False),
            sa.Column("effective_to", sa.Date(), nullable=True),
            _tenant_fk(),
            sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_billing_rates_tenant_id", "billing_rates", ["tenant_id"])
        op.create_index("ix_billing_rates_customer_id", "billing_rates", ["customer_id"])

    if "invoices" not in existing:
        op.create_table(
            "invoices",
            sa.Column("id", sa.Integer(), nullable=False),
            _tenant_col(),
            sa.Column("customer_id", sa.Integer(), nullable=False),
            sa.Column("retainer_period_id", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False),
            sa.Column("issue_date", sa.Date(), nullable=True),
            sa.Column("subtotal", sa.Numeric(precision=12, scale=2), nullable=False),
            sa.Column("created_by", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            _tenant_fk(),
            sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["retainer_period_id"], ["retainer_periods.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("retainer_period_id"),
        )
        op.create_index("ix_invoices_tenant_id", "invoices", ["tenant_id"])
        op.create_index("ix_invoices_customer_id", "invoices", ["customer_id"])

    if "invoice_lines" not in existing:
        op.create_table(
            "invoice_lines",
            sa.Column("id", sa.Integer(), nullable=False),
            _tenant_col(),
            sa.Column("invoice_id", sa.Integer(), nullable=False),
            sa.Column("line_type", sa.String(length=20), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=False),
            sa.Column("quantity", sa.Numeric(precision=10, scale=2), nullable=False),
            sa.Column("unit_price", sa.Numeric(precision=12, scale=2), nullable=False),
            sa.Column("amount", sa.Numeric(precision=12, scale=2), nullable=False),
            sa.Column("sort_order", sa.Integer(), nullable=False),
            _tenant_fk(),
            sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_invoice_lines_tenant_id", "invoice_lines", ["tenant_id"])
        op.create_index("ix_invoice_lines_invoice_id", "invoice_lines", ["invoice_id"])


def downgrade():
    for table in (
        "invoice_lines", "invoices", "billing_rates", "time_entries",
        "retainer_periods", "retainers",
        "checklist_items", "checklist_instances", "checklist_template_items", "checklist_templates",
        "field_definitions", "lifecycle_transitions", "customer_contacts", "customers",
        "notifications", "audit_logs", "tenants",
    ):
        op.drop_table(table)
