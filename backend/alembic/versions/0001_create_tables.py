"""create core tables

Revision ID: 0001_create_tables
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_create_tables"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def _money(name, nullable=False, default="0"):
    return sa.Column(name, sa.Numeric(12, 2), nullable=nullable, server_default=default if not nullable else None)


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=True, unique=True),
        sa.Column("phone", sa.String(length=32), nullable=True, unique=True),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="user"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "artists",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("categories", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("city", sa.String(length=120), nullable=True),
        sa.Column("state", sa.String(length=120), nullable=True),
        sa.Column("country", sa.String(length=120), nullable=True),
        _money("wallet_balance"),
        sa.Column("verification_status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("verification_note", sa.String(length=500), nullable=False, server_default=""),
        *_timestamps(),
    )

    op.create_table(
        "planner_profiles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("organization", sa.String(length=255), nullable=True),
        _money("wallet_balance"),
        sa.Column("verification_status", sa.String(length=20), nullable=False, server_default="pending"),
        *_timestamps(),
    )

    op.create_table(
        "services",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("artist_id", sa.Integer(), sa.ForeignKey("artists.id", ondelete="CASCADE"), nullable=False),
        sa.Column("category", sa.String(length=120), nullable=False),
        sa.Column("unit", sa.String(length=10), nullable=False, server_default="day"),
        _money("price_for_user", nullable=True),
        _money("price_for_planner", nullable=True),
        _money("advance"),
        *_timestamps(),
    )

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("planner_id", sa.Integer(), sa.ForeignKey("planner_profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("venue", sa.String(length=255), nullable=True),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("published", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("artist_id", sa.Integer(), sa.ForeignKey("artists.id", ondelete="CASCADE"), nullable=False),
        sa.Column("service_id", sa.Integer(), sa.ForeignKey("services.id", ondelete="CASCADE"), nullable=False),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="SET NULL"), nullable=True),
        sa.Column("source", sa.String(length=20), nullable=False, server_default="user"),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        _money("total_price"),
        _money("paid_amount"),
        _money("advance_amount"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="unpaid"),
        sa.Column("gateway_order_id", sa.String(length=255), nullable=True, unique=True),
        sa.Column("gateway_payment_id", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("end_at > start_at", name="ck_bookings_interval"),
    )

    op.create_table(
        "calendar_blocks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("artist_id", sa.Integer(), sa.ForeignKey("artists.id", ondelete="CASCADE"), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False, server_default="busy"),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("linked_booking_id", sa.Integer(), sa.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("end_at > start_at", name="ck_calendar_blocks_interval"),
    )

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("owner_type", sa.String(length=20), nullable=False),
        sa.Column("type", sa.String(length=10), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("source", sa.String(length=20), nullable=False),
        sa.Column("reference_id", sa.String(length=255), nullable=True),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("admin_note", sa.String(length=500), nullable=False, server_default=""),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_wallet_transactions_amount"),
    )

    op.create_table(
        "withdrawal_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("owner_type", sa.String(length=20), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("account_holder", sa.String(length=255), nullable=True),
        sa.Column("account_number", sa.String(length=64), nullable=True),
        sa.Column("bank_name", sa.String(length=255), nullable=True),
        sa.Column("ifsc_code", sa.String(length=32), nullable=True),
        sa.Column("upi_id", sa.String(length=255), nullable=True),
        sa.Column("admin_note", sa.String(length=500), nullable=True),
        sa.Column("transaction_id", sa.Integer(), sa.ForeignKey("wallet_transactions.id"), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_withdrawal_requests_amount"),
    )

    op.create_table(
        "commissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("artist_booking_commission", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("ticket_sell_commission", sa.Numeric(5, 2), nullable=False, server_default="0"),
        *_timestamps(),
    )

    op.create_table(
        "ticket_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("sold", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sales_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sales_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("sold >= 0 AND sold <= quantity", name="ck_ticket_types_sold"),
    )

    op.create_table(
        "tickets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("ticket_type_id", sa.Integer(), sa.ForeignKey("ticket_types.id", ondelete="CASCADE"), nullable=False),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("buyer_name", sa.String(length=255), nullable=False),
        sa.Column("buyer_phone", sa.String(length=32), nullable=False),
        sa.Column("persons", sa.Integer(), nullable=False),
        sa.Column("scanned_persons", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("scanned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("scanned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_valid", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("qr_payload", sa.Text(), nullable=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("scanned_persons >= 0 AND scanned_persons <= persons", name="ck_tickets_scanned"),
    )

    op.create_index("ix_services_artist_id", "services", ["artist_id"])
    op.create_index("ix_events_planner_id", "events", ["planner_id"])
    op.create_index("ix_bookings_client_id", "bookings", ["client_id"])
    op.create_index("ix_bookings_artist_interval", "bookings", ["artist_id", "start_at", "end_at"])
    op.create_index("ix_calendar_blocks_artist_interval", "calendar_blocks", ["artist_id", "start_at", "end_at"])
    op.create_index("ix_calendar_blocks_linked_booking_id", "calendar_blocks", ["linked_booking_id"])
    op.create_index("ix_wallet_transactions_owner", "wallet_transactions", ["owner_type", "owner_id"])
    op.create_index("ix_withdrawal_requests_owner", "withdrawal_requests", ["owner_type", "owner_id", "status"])
    op.create_index("ix_ticket_types_event_id", "ticket_types", ["event_id"])
    op.create_index("ix_tickets_event_id", "tickets", ["event_id"])

    if op.get_bind().dialect.name == "postgresql":
        # no two active bookings of one artist may overlap on [start_at, end_at)
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
        op.execute(
            "ALTER TABLE bookings ADD CONSTRAINT ex_bookings_artist_no_overlap "
            "EXCLUDE USING gist (artist_id WITH =, tstzrange(start_at, end_at, '[)') WITH &&) "
            "WHERE (status IN ('pending', 'confirmed'))"
        )


def downgrade():
    if op.get_bind().dialect.name == "postgresql":
        op.execute("ALTER TABLE bookings DROP CONSTRAINT IF EXISTS ex_bookings_artist_no_overlap")

    op.drop_index("ix_tickets_event_id", table_name="tickets")
    op.drop_index("ix_ticket_types_event_id", table_name="ticket_types")
    op.drop_index("ix_withdrawal_requests_owner", table_name="withdrawal_requests")
    op.drop_index("ix_wallet_transactions_owner", table_name="wallet_transactions")
    op.drop_index("ix_calendar_blocks_linked_booking_id", table_name="calendar_blocks")
    op.drop_index("ix_calendar_blocks_artist_interval", table_name="calendar_blocks")
    op.drop_index("ix_bookings_artist_interval", table_name="bookings")
    op.drop_index("ix_bookings_client_id", table_name="bookings")
    op.drop_index("ix_events_planner_id", table_name="events")
    op.drop_index("ix_services_artist_id", table_name="services")
    for table in (
        "tickets", "ticket_types", "commissions", "withdrawal_requests", "wallet_transactions",
        "calendar_blocks", "bookings", "events", "services", "planner_profiles", "artists", "users",
    ):
        op.drop_table(table)
