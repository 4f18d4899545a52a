"""create booking tables

Revision ID: 202610010001
Revises:
Create Date: 2026-10-01 09:00:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610010001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "deals",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("client_name", sa.String(length=255), nullable=False),
        sa.Column("client_email", sa.String(length=320), nullable=False),
        sa.Column("client_phone", sa.String(length=64), nullable=True),
        sa.Column("company", sa.String(length=255), nullable=True),
        sa.Column("event_title", sa.String(length=255), nullable=False),
        sa.Column("event_date", sa.Date(), nullable=True),
        sa.Column("event_location", sa.String(length=255), nullable=True),
        sa.Column("event_type", sa.String(length=64), nullable=True),
        sa.Column("attendee_count", sa.Integer(), nullable=True),
        sa.Column("budget_range", sa.String(length=64), nullable=True),
        sa.Column("deal_value", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="lead"),
        sa.Column("priority", sa.String(length=16), nullable=False, server_default="medium"),
        sa.Column("source", sa.String(length=64), nullable=True),
        sa.Column("speaker_requested", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("last_contact", sa.Date(), nullable=True),
        sa.Column("won_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lost_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_deals_status_created", "deals", ["status", "created_at"])
    op.create_index("ix_deals_client_email", "deals", ["client_email"])

    op.create_table(
        "projects",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("deal_id", sa.Uuid(), nullable=False),
        sa.Column("project_name", sa.String(length=255), nullable=False),
        sa.Column("client_name", sa.String(length=255), nullable=False),
        sa.Column("client_email", sa.String(length=320), nullable=True),
        sa.Column("client_phone", sa.String(length=64), nullable=True),
        sa.Column("company", sa.String(length=255), nullable=True),
        sa.Column("project_type", sa.String(length=32), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="invoicing"),
        sa.Column("priority", sa.String(length=16), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("deadline", sa.Date(), nullable=True),
        sa.Column("budget", sa.Numeric(18, 2), nullable=False),
        sa.Column("spent", sa.Numeric(18, 2), nullable=False),
        sa.Column("completion_percentage", sa.Integer(), nullable=False),
        sa.Column("speaker_fee", sa.Numeric(18, 2), nullable=True),
        sa.Column("commission_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("billing_contact", sa.JSON(), nullable=False),
        sa.Column("logistics_contact", sa.JSON(), nullable=False),
        sa.Column("end_client_name", sa.String(length=255), nullable=True),
        sa.Column("event_name", sa.String(length=255), nullable=True),
        sa.Column("event_date", sa.Date(), nullable=True),
        sa.Column("event_location", sa.String(length=255), nullable=True),
        sa.Column("event_type", sa.String(length=64), nullable=True),
        sa.Column("event_classification", sa.String(length=16), nullable=False),
        sa.Column("requested_speaker_name", sa.String(length=255), nullable=True),
        sa.Column("program_topic", sa.String(length=255), nullable=True),
        sa.Column("audience_size", sa.Integer(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("stage_completion", sa.JSON(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["deal_id"], ["deals.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("deal_id", name="uq_projects_deal_id"),
    )
    op.create_index("ix_projects_status", "projects", ["status"])

    op.create_table(
        "proposals",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("deal_id", sa.Uuid(), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("client_name", sa.String(length=255), nullable=False),
        sa.Column("client_email", sa.String(length=320), nullable=True),
        sa.Column("client_company", sa.String(length=255), nullable=True),
        sa.Column("event_title", sa.String(length=255), nullable=True),
        sa.Column("event_date", sa.Date(), nullable=True),
        sa.Column("event_location", sa.String(length=255), nullable=True),
        sa.Column("speaker_name", sa.String(length=255), nullable=True),
        sa.Column("total_investment", sa.Numeric(18, 2), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["deal_id"], ["deals.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "firm_offers",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("proposal_id", sa.Uuid(), nullable=True),
        sa.Column("deal_id", sa.Uuid(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="draft"),
        sa.Column("speaker_access_token", sa.String(length=64), nullable=False),
        sa.Column("event_overview", sa.JSON(), nullable=False),
        sa.Column("speaker_program", sa.JSON(), nullable=False),
        sa.Column("event_schedule", sa.JSON(), nullable=False),
        sa.Column("technical_requirements", sa.JSON(), nullable=False),
        sa.Column("travel_accommodation", sa.JSON(), nullable=False),
        sa.Column("additional_info", sa.JSON(), nullable=False),
        sa.Column("financial_details", sa.JSON(), nullable=False),
        sa.Column("confirmation", sa.JSON(), nullable=False),
        sa.Column("speaker_name", sa.String(length=255), nullable=True),
        sa.Column("speaker_email", sa.String(length=320), nullable=True),
        sa.Column("speaker_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("hold_expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_to_speaker_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("speaker_viewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("speaker_response_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("hold_expiry_reported_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["proposal_id"], ["proposals.id"]),
        sa.ForeignKeyConstraint(["deal_id"], ["deals.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("proposal_id", name="uq_firm_offers_proposal_id"),
        sa.UniqueConstraint("speaker_access_token", name="uq_firm_offers_speaker_access_token"),
    )
    op.create_index("ix_firm_offers_status_hold", "firm_offers", ["status", "hold_expires_at"])
    op.create_index("ix_firm_offers_deal_id", "firm_offers", ["deal_id"])

    op.create_table(
        "contracts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("contract_number", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("template_id", sa.String(length=64), nullable=False),
        sa.Column("deal_id", sa.Uuid(), nullable=True),
        sa.Column("firm_offer_id", sa.Uuid(), nullable=True),
        sa.Column("client_name", sa.String(length=255), nullable=False),
        sa.Column("client_email", sa.String(length=320), nullable=False),
        sa.Column("client_company", sa.String(length=255), nullable=True),
        sa.Column("client_signer_name", sa.String(length=255), nullable=False),
        sa.Column("client_signer_email", sa.String(length=320), nullable=False),
        sa.Column("client_signer_title", sa.String(length=255), nullable=True),
        sa.Column("speaker_name", sa.String(length=255), nullable=True),
        sa.Column("speaker_email", sa.String(length=320), nullable=True),
        sa.Column("speaker_fee", sa.Numeric(18, 2), nullable=False),
        sa.Column("event_title", sa.String(length=255), nullable=False),
        sa.Column("event_date", sa.Date(), nullable=True),
        sa.Column("event_location", sa.String(length=255), nullable=True),
        sa.Column("event_type", sa.String(length=64), nullable=True),
        sa.Column("attendee_count", sa.Integer(), nullable=True),
        sa.Column("total_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("payment_terms", sa.Text(), nullable=False),
        sa.Column("additional_terms", sa.Text(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="draft"),
        sa.Column("client_signing_token", sa.String(length=64), nullable=False),
        sa.Column("speaker_signing_token", sa.String(length=64), nullable=False),
        sa.Column("tokens_expire_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("client_signed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("client_signature", sa.Text(), nullable=True),
        sa.Column("speaker_signed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("speaker_signature", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["deal_id"], ["deals.id"]),
        sa.ForeignKeyConstraint(["firm_offer_id"], ["firm_offers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("contract_number", name="uq_contracts_contract_number"),
        sa.UniqueConstraint("client_signing_token", name="uq_contracts_client_signing_token"),
        sa.UniqueConstraint("speaker_signing_token", name="uq_contracts_speaker_signing_token"),
    )
    op.create_index("ix_contracts_deal_id", "contracts", ["deal_id"])
    op.create_index("ix_contracts_status", "contracts", ["status"])

    op.create_table(
        "contract_signatures",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("contract_id", sa.Uuid(), nullable=False),
        sa.Column("party", sa.String(length=16), nullable=False),
        sa.Column("signer_name", sa.String(length=255), nullable=False),
        sa.Column("signer_email", sa.String(length=320), nullable=True),
        sa.Column("signer_title", sa.String(length=255), nullable=True),
        sa.Column("signature_data", sa.Text(), nullable=False),
        sa.Column("signature_method", sa.String(length=16), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("signed_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["contract_id"], ["contracts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("contract_id", "party", name="uq_contract_signatures_party"),
    )

    op.create_table(
        "contract_versions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("contract_id", sa.Uuid(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("change_summary", sa.String(length=255), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["contract_id"], ["contracts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("contract_id", "version", name="uq_contract_versions_version"),
    )

    op.create_table(
        "notification_deliveries",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("kind", sa.String(length=64), nullable=False),
        sa.Column("recipient", sa.String(length=320), nullable=False),
        sa.Column("cc", sa.JSON(), nullable=False),
        sa.Column("subject", sa.String(length=500), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("entity_type", sa.String(length=32), nullable=True),
        sa.Column("entity_id", sa.String(length=64), nullable=True),
        sa.Column("backend", sa.String(length=32), nullable=False),
        sa.Column("correlation_id", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notification_deliveries_kind_status", "notification_deliveries", ["kind", "status"])
    op.create_index("ix_notification_deliveries_entity", "notification_deliveries", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_index("ix_notification_deliveries_entity", table_name="notification_deliveries")
    op.drop_index("ix_notification_deliveries_kind_status", table_name="notification_deliveries")
    op.drop_table("notification_deliveries")
    op.drop_table("contract_versions")
    op.drop_table("contract_signatures")
    op.drop_index("ix_contracts_status", table_name="contracts")
    op.drop_index("ix_contracts_deal_id", table_name="contracts")
    op.drop_table("contracts")
    op.drop_index("ix_firm_offers_deal_id", table_name="firm_offers")
    op.drop_index("ix_firm_offers_status_hold", table_name="firm_offers")
    op.drop_table("firm_offers")
    op.drop_table("proposals")
    op.drop_index("ix_projects_status", table_name="projects")
    op.drop_table("projects")
    op.drop_index("ix_deals_client_email", table_name="deals")
    op.drop_index("ix_deals_status_created", table_name="deals")
    op.drop_table("deals")
