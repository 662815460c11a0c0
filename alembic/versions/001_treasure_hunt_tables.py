"""Treasure hunt engine tables.

Creates hunts and clues (IF NOT EXISTS; normally owned by the
marketplace), plus the engine-owned participations, attempt and hint
logs, hunt counters and reward ledger.

Revision ID: 001_treasure_hunt_tables
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_treasure_hunt_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Hunts (marketplace-authored) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS treasure_hunts (
            id SERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            description TEXT,
            status VARCHAR(16) NOT NULL DEFAULT 'draft',
            difficulty VARCHAR(16) NOT NULL DEFAULT 'easy',
            starts_at TIMESTAMPTZ NOT NULL,
            ends_at TIMESTAMPTZ NOT NULL,
            started_at TIMESTAMPTZ,
            completed_at TIMESTAMPTZ,
            max_participants INTEGER,
            prize_pool BIGINT NOT NULL DEFAULT 0,
            metadata JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CHECK (ends_at > starts_at)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_treasure_hunts_status
        ON treasure_hunts(status)
    """)

    # --- Clues (marketplace-authored) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS treasure_hunt_clues (
            id SERIAL PRIMARY KEY,
            hunt_id INTEGER NOT NULL REFERENCES treasure_hunts(id) ON DELETE CASCADE,
            clue_order INTEGER NOT NULL,
            kind VARCHAR(16) NOT NULL,
            clue_text TEXT NOT NULL,
            answer VARCHAR(255),
            target_ref VARCHAR(64),
            qr_secret VARCHAR(128),
            image_url TEXT,
            hints JSONB NOT NULL DEFAULT '[]',
            clue_data JSONB NOT NULL DEFAULT '{}',
            CONSTRAINT uq_clues_hunt_order UNIQUE (hunt_id, clue_order)
        )
    """)

    # --- Participations ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS treasure_hunt_participations (
            id SERIAL PRIMARY KEY,
            hunt_id INTEGER NOT NULL REFERENCES treasure_hunts(id) ON DELETE CASCADE,
            user_id BIGINT NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'in_progress',
            current_clue_index INTEGER NOT NULL DEFAULT 0,
            clues_found INTEGER NOT NULL DEFAULT 0,
            incorrect_attempts INTEGER NOT NULL DEFAULT 0,
            hints_used INTEGER NOT NULL DEFAULT 0,
            started_at TIMESTAMPTZ NOT NULL,
            completed_at TIMESTAMPTZ,
            time_taken_seconds DOUBLE PRECISION,
            rank INTEGER,
            reward_amount BIGINT,
            version INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_participations_hunt_user UNIQUE (hunt_id, user_id),
            CONSTRAINT uq_participations_hunt_rank UNIQUE (hunt_id, rank)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_participations_user
        ON treasure_hunt_participations(user_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_participations_leaderboard
        ON treasure_hunt_participations(hunt_id, completed_at, time_taken_seconds)
        WHERE status = 'completed'
    """)

    # --- Attempt log ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS clue_attempts (
            id SERIAL PRIMARY KEY,
            participation_id INTEGER NOT NULL
                REFERENCES treasure_hunt_participations(id) ON DELETE CASCADE,
            clue_id INTEGER NOT NULL REFERENCES treasure_hunt_clues(id) ON DELETE CASCADE,
            answer VARCHAR(255) NOT NULL,
            correct BOOLEAN NOT NULL DEFAULT false,
            attempted_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_clue_attempts_participation
        ON clue_attempts(participation_id)
    """)

    # --- Hint log ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS hint_reveals (
            id SERIAL PRIMARY KEY,
            participation_id INTEGER NOT NULL
                REFERENCES treasure_hunt_participations(id) ON DELETE CASCADE,
            clue_id INTEGER NOT NULL REFERENCES treasure_hunt_clues(id) ON DELETE CASCADE,
            level INTEGER NOT NULL,
            revealed_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_hint_reveals_participation_clue_level UNIQUE (participation_id, clue_id, level)
        )
    """)

    # --- Hunt counters (rank sequence + capacity) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS hunt_counters (
            hunt_id INTEGER PRIMARY KEY REFERENCES treasure_hunts(id) ON DELETE CASCADE,
            participant_count INTEGER NOT NULL DEFAULT 0,
            completed_count INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Reward ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS hunt_reward_ledger (
            id SERIAL PRIMARY KEY,
            hunt_id INTEGER NOT NULL REFERENCES treasure_hunts(id) ON DELETE CASCADE,
            participation_id INTEGER
                REFERENCES treasure_hunt_participations(id) ON DELETE SET NULL,
            user_id BIGINT NOT NULL,
            kind VARCHAR(16) NOT NULL,
            rank INTEGER,
            amount BIGINT NOT NULL,
            description VARCHAR(256) NOT NULL,
            idempotency_key VARCHAR(128) UNIQUE NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            credited_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_hunt_reward_ledger_user
        ON hunt_reward_ledger(user_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_hunt_reward_ledger_uncredited
        ON hunt_reward_ledger(created_at)
        WHERE credited_at IS NULL
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS hunt_reward_ledger")
    op.execute("DROP TABLE IF EXISTS hunt_counters")
    op.execute("DROP TABLE IF EXISTS hint_reveals")
    op.execute("DROP TABLE IF EXISTS clue_attempts")
    op.execute("DROP TABLE IF EXISTS treasure_hunt_participations")
    op.execute("DROP TABLE IF EXISTS treasure_hunt_clues")
    op.execute("DROP TABLE IF EXISTS treasure_hunts")
