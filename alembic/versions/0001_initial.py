"""initial

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18

"""

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        "rides",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("driver_id", sa.String(length=128), nullable=False),
        sa.Column("origin_label", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("origin_address", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("destination_label", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("destination_address", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("departure_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("arrival_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("price_per_seat", sa.Integer(), nullable=False),
        sa.Column("total_seats", sa.Integer(), nullable=False),
        sa.Column("available_seats", sa.Integer(), nullable=False),
        sa.Column("instant_booking", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="published"),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("total_seats BETWEEN 1 AND 8", name="ck_rides_total_seats"),
        sa.CheckConstraint("available_seats >= 0 AND available_seats <= total_seats", name="ck_rides_available_seats"),
        sa.CheckConstraint("price_per_seat >= 0", name="ck_rides_price_per_seat"),
    )
    op.create_index("ix_rides_driver_id", "rides", ["driver_id"])
    op.create_index("ix_rides_departure_at", "rides", ["departure_at"])
    op.create_index("ix_rides_status", "rides", ["status"])

    op.create_table(
        "ride_seat_entries",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("ride_id", sa.String(length=36), nullable=False),
        sa.Column("passenger_id", sa.String(length=128), nullable=False),
        sa.Column("booking_id", sa.String(length=36), nullable=True),
        sa.Column("seats_booked", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("booked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("pickup_point", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("dropoff_point", sa.String(length=500), nullable=False, server_default=""),
        sa.UniqueConstraint("ride_id", "passenger_id", name="uq_ride_seat_entry_ride_passenger"),
    )
    op.create_index("ix_ride_seat_entries_ride_id", "ride_seat_entries", ["ride_id"])
    op.create_index("ix_ride_seat_entries_passenger_id", "ride_seat_entries", ["passenger_id"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("ride_id", sa.String(length=36), nullable=False),
        sa.Column("passenger_id", sa.String(length=128), nullable=False),
        sa.Column("driver_id", sa.String(length=128), nullable=False),
        sa.Column("seats_booked", sa.Integer(), nullable=False),
        sa.Column("pickup_point", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("dropoff_point", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("price_per_seat", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("service_fee", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("final_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("refunded_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="requested"),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("idempotency_key", sa.String(length=120), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("passenger_id", "idempotency_key", name="uq_booking_passenger_idempotency_key"),
        sa.CheckConstraint("seats_booked BETWEEN 1 AND 8", name="ck_bookings_seats_booked"),
    )
    op.create_index("ix_bookings_ride_id", "bookings", ["ride_id"])
    op.create_index("ix_bookings_passenger_id", "bookings", ["passenger_id"])
    op.create_index("ix_bookings_driver_id", "bookings", ["driver_id"])
    op.create_index("ix_bookings_status", "bookings", ["status"])

    op.create_table(
        "payments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("ride_id", sa.String(length=36), nullable=False),
        sa.Column("gateway", sa.String(length=40), nullable=False, server_default="cybersource"),
        sa.Column("gateway_order_id", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("gateway_payment_id", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("payment_method", sa.String(length=40), nullable=False, server_default=""),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=10), nullable=False, server_default="INR"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("refunds", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_payments_booking_id", "payments", ["booking_id"])
    op.create_index("ix_payments_user_id", "payments", ["user_id"])
    op.create_index("ix_payments_ride_id", "payments", ["ride_id"])
    op.create_index("ix_payments_gateway_order_id", "payments", ["gateway_order_id"])
    op.create_index("ix_payments_status", "payments", ["status"])
    op.create_index(
        "uq_payments_booking_completed", "payments", ["booking_id"], unique=True,
        postgresql_where=sa.text("status = 'completed'"),
        sqlite_where=sa.text("status = 'completed'"),
    )

    op.create_table(
        "payouts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("provider_id", sa.String(length=128), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=10), nullable=False, server_default="INR"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("payout_method", sa.String(length=40), nullable=False),
        sa.Column("bank_details", sa.JSON(), nullable=False),
        sa.Column("transaction_ids", sa.JSON(), nullable=False),
        sa.Column("platform_fee", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("net_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("processed_by", sa.String(length=128), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_payouts_provider_id", "payouts", ["provider_id"])
    op.create_index("ix_payouts_status", "payouts", ["status"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("actor_user_id", sa.String(length=128), nullable=False),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("entity_type", sa.String(length=40), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("details_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_actor_user_id", "audit_logs", ["actor_user_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"])
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"])

    op.create_table(
        "notification_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("event_type", sa.String(length=60), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="queued"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_notification_logs_user_id", "notification_logs", ["user_id"])
    op.create_index("ix_notification_logs_event_type", "notification_logs", ["event_type"])
    op.create_index("ix_notification_logs_status", "notification_logs", ["status"])

def downgrade() -> None:
    op.drop_table("notification_logs")
    op.drop_table("audit_logs")
    op.drop_table("payouts")
    op.drop_table("payments")
    op.drop_table("bookings")
    op.drop_table("ride_seat_entries")
    op.drop_table("rides")
