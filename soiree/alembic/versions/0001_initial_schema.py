"""Initial Soirée schema."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "meta",
        sa.Column("key", sa.String(length=128), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )

    op.create_table(
        "members",
        sa.Column("uid", sa.String(length=128), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=120), nullable=False),
        sa.Column("trust_badges", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("uid"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "events",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("slug", sa.String(length=128), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("date", sa.String(length=10), nullable=False),
        sa.Column("city", sa.String(length=120), nullable=False),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("lat", sa.Float(), nullable=True),
        sa.Column("lng", sa.Float(), nullable=True),
        sa.Column(
            "privacy_tier", sa.String(length=16), nullable=False, server_default="Public"
        ),
        sa.Column("host_name", sa.String(length=120), nullable=False),
        sa.Column("host_email", sa.String(length=255), nullable=False),
        sa.Column("cap_men", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cap_women", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cap_couples", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("invited_emails", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_modified", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
    )

    op.create_table(
        "rsvps",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("event_slug", sa.String(length=128), nullable=False),
        sa.Column("user_uid", sa.String(length=128), nullable=False),
        sa.Column("user_name", sa.String(length=120), nullable=False),
        sa.Column("user_email", sa.String(length=255), nullable=False),
        sa.Column("category", sa.String(length=16), nullable=False),
        sa.Column(
            "status", sa.String(length=16), nullable=False, server_default="Pending"
        ),
        sa.Column("trust_badges", sa.JSON(), nullable=False),
        sa.Column("checkin_token", sa.String(length=64), nullable=False),
        sa.Column(
            "token_degraded", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_modified", sa.DateTime(), nullable=False),
        sa.Column("reviewed_by", sa.String(length=255), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("consumed_at", sa.DateTime(), nullable=True),
        sa.Column("checked_in_by", sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(["event_slug"], ["events.slug"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_slug", "user_uid", name="uq_rsvps_event_user"),
    )
    op.create_index("ix_rsvps_event_slug", "rsvps", ["event_slug"])
    op.create_index("ix_rsvps_user_uid", "rsvps", ["user_uid"])
    op.create_index(
        "ix_rsvps_checkin_token", "rsvps", ["checkin_token"], unique=True
    )


def downgrade() -> None:
    op.drop_index("ix_rsvps_checkin_token", table_name="rsvps")
    op.drop_index("ix_rsvps_user_uid", table_name="rsvps")
    op.drop_index("ix_rsvps_event_slug", table_name="rsvps")
    op.drop_table("rsvps")
    op.drop_table("events")
    op.drop_table("members")
    op.drop_table("meta")
