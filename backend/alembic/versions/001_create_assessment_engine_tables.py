"""create assessment sessions, session questions and entitlement tables

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "assessment_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("public_id", sa.String(length=32), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("difficulty", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=True),
        sa.Column("company", sa.String(), nullable=True),
        sa.Column("language", sa.String(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("duration_seconds", sa.Integer(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("violation_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("violation_log", sa.JSON(), nullable=True),
        sa.Column("tab_switch_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("clipboard_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("shortcut_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("context_menu_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("overall_score", sa.Integer(), nullable=True),
        sa.Column("overall_feedback", sa.Text(), nullable=True),
        sa.Column("result_degraded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("termination_reason", sa.String(), nullable=True),
        sa.Column("selection_seed", sa.Integer(), nullable=True),
        sa.Column("questions_requested", sa.Integer(), nullable=True),
        sa.Column("provisioning_shortfall", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("entitlement_source", sa.String(), nullable=True),
        sa.Column("timeline", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(op.f("ix_assessment_sessions_id"), "assessment_sessions", ["id"], unique=False)
    op.create_index(op.f("ix_assessment_sessions_public_id"), "assessment_sessions", ["public_id"], unique=True)
    op.create_index(op.f("ix_assessment_sessions_user_id"), "assessment_sessions", ["user_id"], unique=False)
    op.create_index(op.f("ix_assessment_sessions_status"), "assessment_sessions", ["status"], unique=False)

    op.create_table(
        "session_questions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "session_id",
            sa.Integer(),
            sa.ForeignKey("assessment_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("ordinal", sa.Integer(), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("question_type", sa.String(), nullable=False),
        sa.Column("difficulty", sa.String(), nullable=False),
        sa.Column("weight", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("source", sa.String(), nullable=True),
        sa.Column("bank_key", sa.String(), nullable=True),
        sa.Column("hints", sa.JSON(), nullable=True),
        sa.Column("test_cases", sa.JSON(), nullable=True),
        sa.Column("sample_answer", sa.Text(), nullable=True),
        sa.Column("options", sa.JSON(), nullable=True),
        sa.Column("correct_answer", sa.JSON(), nullable=True),
        sa.Column("keywords", sa.JSON(), nullable=True),
        sa.Column("entrypoint", sa.String(), nullable=True),
        sa.Column("answer_text", sa.Text(), nullable=True),
        sa.Column("submitted_code", sa.Text(), nullable=True),
        sa.Column("time_spent_seconds", sa.Integer(), nullable=True),
        sa.Column("answered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sub_score", sa.Integer(), nullable=True),
        sa.Column("feedback", sa.Text(), nullable=True),
        sa.Column("scoring_degraded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("needs_review", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("scoring_details", sa.JSON(), nullable=True),
        sa.Column("scored_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("session_id", "ordinal", name="uq_session_questions_ordinal"),
    )
    op.create_index(op.f("ix_session_questions_id"), "session_questions", ["id"], unique=False)
    op.create_index(op.f("ix_session_questions_session_id"), "session_questions", ["session_id"], unique=False)

    op.create_table(
        "entitlement_records",
        sa.Column("user_id", sa.String(), primary_key=True),
        sa.Column("plan", sa.String(), nullable=False, server_default="free"),
        sa.Column("free_interviews_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("free_tests_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("credits_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sessions_scored", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("average_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("best_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_session_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("credits_balance >= 0", name="ck_entitlement_records_credits_non_negative"),
    )

    op.create_table(
        "entitlement_ledger",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("external_ref", sa.String(), nullable=True),
        sa.Column("session_public_id", sa.String(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(op.f("ix_entitlement_ledger_id"), "entitlement_ledger", ["id"], unique=False)
    op.create_index(op.f("ix_entitlement_ledger_user_id"), "entitlement_ledger", ["user_id"], unique=False)
    op.create_index(op.f("ix_entitlement_ledger_external_ref"), "entitlement_ledger", ["external_ref"], unique=True)
    op.create_index(
        op.f("ix_entitlement_ledger_session_public_id"), "entitlement_ledger", ["session_public_id"], unique=False
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_entitlement_ledger_session_public_id"), table_name="entitlement_ledger")
    op.drop_index(op.f("ix_entitlement_ledger_external_ref"), table_name="entitlement_ledger")
    op.drop_index(op.f("ix_entitlement_ledger_user_id"), table_name="entitlement_ledger")
    op.drop_index(op.f("ix_entitlement_ledger_id"), table_name="entitlement_ledger")
    op.drop_table("entitlement_ledger")
    op.drop_table("entitlement_records")
    op.drop_index(op.f("ix_session_questions_session_id"), table_name="session_questions")
    op.drop_index(op.f("ix_session_questions_id"), table_name="session_questions")
    op.drop_table("session_questions")
    op.drop_index(op.f("ix_assessment_sessions_status"), table_name="assessment_sessions")
    op.drop_index(op.f("ix_assessment_sessions_user_id"), table_name="assessment_sessions")
    op.drop_index(op.f("ix_assessment_sessions_public_id"), table_name="assessment_sessions")
    op.drop_index(op.f("ix_assessment_sessions_id"), table_name="assessment_sessions")
    op.drop_table("assessment_sessions")
