"""organizations, shared entities, import history, event bus

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19T09:00:00.000000Z
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

ORG_TYPES = (
    "COMMERCIAL",
    "PUBLIC",
    "GOVERNMENT",
    "TRUST",
    "PRIVATE_LIMITED_COMPANY",
    "OPEN_JOINT_STOCK_COMPANY",
)


def upgrade():
    op.create_table(
        "coordinates",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("x", sa.Float(), nullable=False),
        sa.Column("y", sa.Float(), nullable=False),
    )

    op.create_table(
        "location",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("x", sa.Float(), nullable=False),
        sa.Column("y", sa.Float(), nullable=False),
        sa.Column("z", sa.Float(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False, unique=True),
    )

    op.create_table(
        "address",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("zip_code", sa.String(length=64), nullable=True),
        sa.Column("town_id", sa.Integer(), sa.ForeignKey("location.id"), nullable=False),
    )
    op.create_index("ix_address_town_id", "address", ["town_id"])

    op.create_table(
        "organization",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("coordinates_id", sa.Integer(), sa.ForeignKey("coordinates.id"), nullable=False),
        sa.Column("creation_date", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("annual_turnover", sa.BigInteger(), nullable=True),
        sa.Column("employees_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("full_name", sa.String(length=512), nullable=True, unique=True),
        sa.Column("type", sa.Enum(*ORG_TYPES, name="organizationtype"), nullable=False),
        sa.Column("postal_address_id", sa.Integer(), sa.ForeignKey("address.id"), nullable=False),
        sa.Column("official_address_id", sa.Integer(), sa.ForeignKey("address.id"), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_organization_coordinates_id", "organization", ["coordinates_id"])
    op.create_index("ix_organization_postal_address_id", "organization", ["postal_address_id"])
    op.create_index("ix_organization_official_address_id", "organization", ["official_address_id"])
    op.create_index("ix_organization_type", "organization", ["type"])
    op.create_index("ix_organization_rating", "organization", ["rating"])

    op.create_table(
        "import_operation",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "status",
            sa.Enum("IN_PROGRESS", "SUCCESS", "FAILED", name="importstatus"),
            nullable=False,
        ),
        sa.Column("username", sa.String(length=128), nullable=False),
        sa.Column(
            "object_type",
            sa.Enum("ORGANIZATION", "COORDINATES", "LOCATION", "ADDRESS", name="importobjecttype"),
            nullable=False,
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("added_count", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("storage_bucket", sa.String(length=255), nullable=True),
        sa.Column("storage_object", sa.String(length=1024), nullable=True),
        sa.Column("storage_file_name", sa.String(length=255), nullable=True),
        sa.Column("storage_content_type", sa.String(length=255), nullable=True),
        sa.Column("storage_size", sa.BigInteger(), nullable=True),
    )
    op.create_index("ix_import_operation_username", "import_operation", ["username"])
    op.create_index("ix_import_operation_user_started", "import_operation", ["username", "started_at"])

    op.create_table(
        "outbox_event",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("topic", sa.String(length=128), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("delivered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_outbox_event_topic", "outbox_event", ["topic"])
    op.create_index("ix_outbox_delivery", "outbox_event", ["delivered", "available_at"])

    op.create_table(
        "event_subscription",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("topic_pattern", sa.String(length=128), nullable=False),
        sa.Column("target_url", sa.Text(), nullable=False),
        sa.Column("headers", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("failure_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_delivered_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_event_subscription_topic_pattern", "event_subscription", ["topic_pattern"])
    op.create_index("ix_event_subscription_is_active", "event_subscription", ["is_active"])


def downgrade():
    op.drop_index("ix_event_subscription_is_active", table_name="event_subscription")
    op.drop_index("ix_event_subscription_topic_pattern", table_name="event_subscription")
    op.drop_table("event_subscription")

    op.drop_index("ix_outbox_delivery", table_name="outbox_event")
    op.drop_index("ix_outbox_event_topic", table_name="outbox_event")
    op.drop_table("outbox_event")

    op.drop_index("ix_import_operation_user_started", table_name="import_operation")
    op.drop_index("ix_import_operation_username", table_name="import_operation")
    op.drop_table("import_operation")

    for name in (
        "ix_organization_rating",
        "ix_organization_type",
        "ix_organization_official_address_id",
        "ix_organization_postal_address_id",
        "ix_organization_coordinates_id",
    ):
        op.drop_index(name, table_name="organization")
    op.drop_table("organization")

    op.drop_index("ix_address_town_id", table_name="address")
    op.drop_table("address")
    op.drop_table("location")
    op.drop_table("coordinates")

    sa.Enum(name="importobjecttype").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="importstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="organizationtype").drop(op.get_bind(), checkfirst=True)
