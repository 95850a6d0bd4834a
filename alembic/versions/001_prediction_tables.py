"""Prediction tables: predictions, bets, results and derived user statistics.

Revision ID: 001_prediction_tables
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_prediction_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Predictions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS predictions (
            id BIGSERIAL PRIMARY KEY,
            title VARCHAR(200) NOT NULL,
            description TEXT,
            options JSONB NOT NULL,
            category VARCHAR(32) NOT NULL DEFAULT 'general',
            status VARCHAR(16) NOT NULL DEFAULT 'open',
            betting_opens_at TIMESTAMPTZ,
            betting_deadline TIMESTAMPTZ,
            reveal_date TIMESTAMPTZ,
            points_pool INTEGER NOT NULL DEFAULT 100,
            created_by VARCHAR(64) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT predictions_status_check CHECK (status IN ('open', 'closed', 'revealed'))
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_predictions_status
        ON predictions(status)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_predictions_open_deadline
        ON predictions(betting_deadline) WHERE status = 'open'
    """)

    # --- Bets ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS prediction_bets (
            id BIGSERIAL PRIMARY KEY,
            prediction_id BIGINT NOT NULL REFERENCES predictions(id) ON DELETE CASCADE,
            user_id VARCHAR(64) NOT NULL,
            selected_option VARCHAR(64) NOT NULL,
            points_wagered INTEGER NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT prediction_bets_prediction_user_key UNIQUE (prediction_id, user_id),
            CONSTRAINT prediction_bets_points_positive CHECK (points_wagered > 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_prediction_bets_prediction_id
        ON prediction_bets(prediction_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_prediction_bets_user_id
        ON prediction_bets(user_id)
    """)

    # --- Results ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS prediction_results (
            id BIGSERIAL PRIMARY KEY,
            prediction_id BIGINT NOT NULL UNIQUE REFERENCES predictions(id) ON DELETE CASCADE,
            correct_option VARCHAR(64) NOT NULL,
            revealed_by VARCHAR(64) NOT NULL,
            revealed_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            first_revealed_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_prediction_results_first_revealed_at
        ON prediction_results(first_revealed_at)
    """)

    # --- User statistics (written only by settlement) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_prediction_stats (
            user_id VARCHAR(64) PRIMARY KEY,
            total_points INTEGER NOT NULL DEFAULT 1000,
            points_won INTEGER NOT NULL DEFAULT 0,
            points_lost INTEGER NOT NULL DEFAULT 0,
            correct_predictions INTEGER NOT NULL DEFAULT 0,
            total_predictions INTEGER NOT NULL DEFAULT 0,
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_prediction_stats_points
        ON user_prediction_stats(total_points DESC)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS user_prediction_stats CASCADE")
    op.execute("DROP TABLE IF EXISTS prediction_results CASCADE")
    op.execute("DROP TABLE IF EXISTS prediction_bets CASCADE")
    op.execute("DROP TABLE IF EXISTS predictions CASCADE")
