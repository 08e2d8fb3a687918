"""initial schema: users, animals, appointments, chat, notifications

Revision ID: 5b1e7c2a9f30
Revises:
Create Date: 2026-10-18 11:20:41.512307

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5b1e7c2a9f30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


role_enum = sa.Enum("client", "veterinarian", "secretary", "admin", name="roleenum")
gender_enum = sa.Enum("male", "female", name="genderenum")
appt_type_enum = sa.Enum("household", "clinic", name="appttype")
appt_status_enum = sa.Enum("pending", "accepted", "rejected", name="apptstatus")
message_type_enum = sa.Enum("text", "image", "video", "audio", "file", name="messagetype")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("role", role_enum, nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("veterinarian_id", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("profile_picture", sa.String(1024), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_veterinarian_id", "users", ["veterinarian_id"])
    op.create_index("ix_users_role_active", "users", ["role", "is_active"])

    op.create_table(
        "animals",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("owner_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("species", sa.String(100), nullable=True),
        sa.Column("breed", sa.String(100), nullable=True),
        sa.Column("gender", gender_enum, nullable=True),
        sa.Column("birth_date", sa.Date(), nullable=True),
    )
    op.create_index("ix_animals_owner_id", "animals", ["owner_id"])

    op.create_table(
        "appointments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("client_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("veterinarian_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("animal_id", sa.String(36), sa.ForeignKey("animals.id"), nullable=False),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("type", appt_type_enum, nullable=False),
        sa.Column("status", appt_status_enum, nullable=False),
        sa.Column("services", sa.JSON(), nullable=False),
        sa.Column("case_description", sa.Text(), nullable=False),
        sa.Column("reminder_sent", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_appointments_client_id", "appointments", ["client_id"])
    op.create_index("ix_appointments_veterinarian_id", "appointments", ["veterinarian_id"])
    op.create_index("ix_appointments_animal_id", "appointments", ["animal_id"])
    op.create_index("ix_appointments_date", "appointments", ["date"])
    # solapamientos del veterinario
    op.create_index("ix_appt_vet_date", "appointments", ["veterinarian_id", "date"])
    # poller de recordatorios
    op.create_index("ix_appt_status_reminder_date", "appointments", ["status", "reminder_sent", "date"])

    op.create_table(
        "chats",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("participants_key", sa.String(64), nullable=False),
        sa.Column("veterinarian_id", sa.String(36), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("is_group", sa.Boolean(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("last_message_id", sa.String(36), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("participants_key"),
    )
    op.create_index("ix_chats_veterinarian_id", "chats", ["veterinarian_id"])
    op.create_index("ix_chats_updated_at", "chats", ["updated_at"])

    op.create_table(
        "chat_participants",
        sa.Column("chat_id", sa.String(36), sa.ForeignKey("chats.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    )
    op.create_index("ix_chat_participants_user_id", "chat_participants", ["user_id"])

    op.create_table(
        "messages",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("chat_id", sa.String(36), sa.ForeignKey("chats.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sender_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", message_type_enum, nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_messages_sender_id", "messages", ["sender_id"])
    op.create_index("ix_messages_chat_created", "messages", ["chat_id", "created_at"])

    op.create_table(
        "message_reads",
        sa.Column("message_id", sa.String(36), sa.ForeignKey("messages.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    )
    op.create_index("ix_message_reads_user_id", "message_reads", ["user_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "appointment_id", sa.String(36),
            sa.ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"])


def downgrade() -> None:
    # orden inverso por las FKs
    op.drop_table("notifications")
    op.drop_table("message_reads")
    op.drop_table("messages")
    op.drop_table("chat_participants")
    op.drop_table("chats")
    op.drop_table("appointments")
    op.drop_table("animals")
    op.drop_table("users")
