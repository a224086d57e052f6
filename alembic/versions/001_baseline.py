"""Baseline schema.

Creates users, realms, tasks, xp_ledger, badges and daily_quests.

Revision ID: 001_baseline
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_baseline"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            username VARCHAR(20) UNIQUE NOT NULL,
            avatar VARCHAR(64) NOT NULL DEFAULT 'starter-warrior',
            xp BIGINT NOT NULL DEFAULT 0 CONSTRAINT users_xp_non_negative CHECK (xp >= 0),
            level INTEGER NOT NULL DEFAULT 1,
            tasks_completed INTEGER NOT NULL DEFAULT 0
                CONSTRAINT users_tasks_completed_non_negative CHECK (tasks_completed >= 0),
            realms_cleared INTEGER NOT NULL DEFAULT 0,
            streak INTEGER NOT NULL DEFAULT 0,
            streak_day DATE,
            previous_streak INTEGER NOT NULL DEFAULT 0,
            active_realms INTEGER NOT NULL DEFAULT 0,
            last_active_date TIMESTAMPTZ,
            version INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Realms ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS realms (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            name VARCHAR(50) NOT NULL,
            description VARCHAR(200) NOT NULL DEFAULT '',
            theme VARCHAR(16) NOT NULL DEFAULT 'nature',
            difficulty VARCHAR(16) NOT NULL DEFAULT 'medium',
            total_tasks INTEGER NOT NULL DEFAULT 0,
            completed_tasks INTEGER NOT NULL DEFAULT 0,
            total_xp_earned BIGINT NOT NULL DEFAULT 0
                CONSTRAINT realms_total_xp_non_negative CHECK (total_xp_earned >= 0),
            version INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT realms_completed_within_total
                CHECK (completed_tasks >= 0 AND completed_tasks <= total_tasks)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_realms_user ON realms(user_id)")

    # --- Tasks ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS tasks (
            id BIGSERIAL PRIMARY KEY,
            realm_id BIGINT NOT NULL REFERENCES realms(id) ON DELETE CASCADE,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            title VARCHAR(100) NOT NULL,
            description VARCHAR(500) NOT NULL DEFAULT '',
            difficulty VARCHAR(16) NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            xp_reward INTEGER NOT NULL CONSTRAINT tasks_xp_reward_positive CHECK (xp_reward >= 1),
            due_date TIMESTAMPTZ,
            completed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_tasks_realm_status ON tasks(realm_id, status)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_tasks_user_completed_at ON tasks(user_id, completed_at)")

    # --- XP Ledger (insert/delete only) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS xp_ledger (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            task_id BIGINT REFERENCES tasks(id) ON DELETE SET NULL,
            xp_gained INTEGER NOT NULL,
            source VARCHAR(32) NOT NULL,
            source_id VARCHAR(128),
            description VARCHAR(256) NOT NULL,
            idempotency_key VARCHAR(256) UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_xp_ledger_user_created ON xp_ledger(user_id, created_at)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_xp_ledger_task_source ON xp_ledger(task_id, source)")

    # --- Badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badges (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            badge_type VARCHAR(64) NOT NULL,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL,
            rarity VARCHAR(16) NOT NULL DEFAULT 'common',
            progress INTEGER NOT NULL DEFAULT 0,
            target INTEGER NOT NULL,
            completed BOOLEAN NOT NULL DEFAULT false,
            earned_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT badges_user_id_badge_type_key UNIQUE (user_id, badge_type)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_badges_user_completed ON badges(user_id, completed)")

    # --- Daily Quests ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS daily_quests (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            title VARCHAR(100) NOT NULL,
            description VARCHAR(200) NOT NULL,
            quest_type VARCHAR(32) NOT NULL,
            target INTEGER NOT NULL CONSTRAINT daily_quests_target_positive CHECK (target >= 1),
            progress INTEGER NOT NULL DEFAULT 0,
            xp_reward INTEGER NOT NULL CONSTRAINT daily_quests_xp_reward_positive CHECK (xp_reward >= 1),
            status VARCHAR(16) NOT NULL DEFAULT 'active',
            is_custom BOOLEAN NOT NULL DEFAULT false,
            expires_at TIMESTAMPTZ NOT NULL,
            claimed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT daily_quests_progress_within_target CHECK (progress >= 0 AND progress <= target)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_daily_quests_user_expires ON daily_quests(user_id, expires_at)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_daily_quests_user_status ON daily_quests(user_id, status)")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS daily_quests CASCADE")
    op.execute("DROP TABLE IF EXISTS badges CASCADE")
    op.execute("DROP TABLE IF EXISTS xp_ledger CASCADE")
    op.execute("DROP TABLE IF EXISTS tasks CASCADE")
    op.execute("DROP TABLE IF EXISTS realms CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
