"""Gamification core tables.

Creates the directory tables the engine reads (circles, users), the event log
and points ledger, streaks, milestones, badges, quests, leagues, period
snapshots and notifications.

Revision ID: 001_gamification_core
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_gamification_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Directory ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS circles (
            id BIGSERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            total_score BIGINT NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            display_name VARCHAR(64),
            role VARCHAR(16) NOT NULL DEFAULT 'member',
            circle_id BIGINT REFERENCES circles(id) ON DELETE SET NULL,
            attributes JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_users_circle ON users(circle_id)")

    # --- Events ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS events (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            event_type VARCHAR(64) NOT NULL,
            entity_type VARCHAR(32),
            entity_id BIGINT,
            occurred_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            event_date DATE NOT NULL,
            idempotency_key VARCHAR(64) UNIQUE NOT NULL,
            source VARCHAR(32) NOT NULL DEFAULT 'web',
            status VARCHAR(16) NOT NULL,
            rejection_reason VARCHAR(64),
            points_awarded INTEGER NOT NULL DEFAULT 0,
            metadata JSONB DEFAULT '{}'
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_events_user_type_date
        ON events(user_id, event_type, event_date)
    """)

    # --- Points ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS points_ledger (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            points_delta INTEGER NOT NULL,
            reason VARCHAR(64) NOT NULL,
            related_event_id BIGINT REFERENCES events(id) ON DELETE SET NULL,
            balance_after BIGINT NOT NULL,
            metadata JSONB,
            entry_date DATE NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_points_ledger_user_date
        ON points_ledger(user_id, entry_date)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_score_totals (
            user_id BIGINT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            total_score BIGINT NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Streaks and milestones ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS streaks (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            streak_type VARCHAR(32) NOT NULL,
            current_count INTEGER NOT NULL DEFAULT 0,
            longest_count INTEGER NOT NULL DEFAULT 0,
            last_activity_date DATE,
            grace_used_this_week INTEGER NOT NULL DEFAULT 0,
            CONSTRAINT uq_streaks_user_type UNIQUE (user_id, streak_type)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS milestones (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            milestone_type VARCHAR(32) NOT NULL,
            entity_id BIGINT NOT NULL,
            milestone_value INTEGER NOT NULL,
            points_awarded INTEGER NOT NULL DEFAULT 0,
            awarded_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_milestones_user_type_entity_value
                UNIQUE (user_id, milestone_type, entity_id, milestone_value)
        )
    """)

    # --- Badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badge_definitions (
            id BIGSERIAL PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            title VARCHAR(128) NOT NULL,
            description TEXT,
            icon VARCHAR(16),
            category VARCHAR(32) NOT NULL DEFAULT 'behavior',
            tier VARCHAR(16) NOT NULL DEFAULT 'bronze',
            max_progress INTEGER NOT NULL DEFAULT 1,
            conditions JSONB NOT NULL DEFAULT '{}',
            is_active BOOLEAN NOT NULL DEFAULT true
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_badges (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            badge_slug VARCHAR(64) NOT NULL,
            current_progress INTEGER NOT NULL DEFAULT 0,
            is_earned BOOLEAN NOT NULL DEFAULT false,
            earned_at TIMESTAMPTZ,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_user_badges_user_slug UNIQUE (user_id, badge_slug)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_badges_earned
        ON user_badges(user_id, earned_at) WHERE is_earned
    """)

    # --- Quests ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS task_definitions (
            id BIGSERIAL PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            title VARCHAR(128) NOT NULL,
            description TEXT,
            task_type VARCHAR(16) NOT NULL,
            target_value INTEGER NOT NULL DEFAULT 1,
            scoring_event_types JSONB NOT NULL DEFAULT '[]',
            reward_score INTEGER NOT NULL DEFAULT 0,
            badge_progress_contribution INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true,
            source VARCHAR(16) NOT NULL DEFAULT 'dynamic'
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_tasks (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            task_definition_id BIGINT NOT NULL REFERENCES task_definitions(id) ON DELETE CASCADE,
            period_key VARCHAR(16) NOT NULL,
            current_value INTEGER NOT NULL DEFAULT 0,
            target_value INTEGER NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'in_progress',
            completed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_user_tasks_user_def_period UNIQUE (user_id, task_definition_id, period_key)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS circle_tasks (
            id BIGSERIAL PRIMARY KEY,
            circle_id BIGINT NOT NULL REFERENCES circles(id) ON DELETE CASCADE,
            task_definition_id BIGINT NOT NULL REFERENCES task_definitions(id) ON DELETE CASCADE,
            period_key VARCHAR(16) NOT NULL,
            current_value BIGINT NOT NULL DEFAULT 0,
            target_value BIGINT NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'in_progress',
            completed_at TIMESTAMPTZ,
            completed_date DATE,
            CONSTRAINT uq_circle_tasks_circle_def_period UNIQUE (circle_id, task_definition_id, period_key)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS circle_task_contributions (
            id BIGSERIAL PRIMARY KEY,
            circle_task_id BIGINT NOT NULL REFERENCES circle_tasks(id) ON DELETE CASCADE,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            contribution_date DATE NOT NULL,
            contribution_value BIGINT NOT NULL DEFAULT 0,
            CONSTRAINT uq_circle_contrib_task_user_date UNIQUE (circle_task_id, user_id, contribution_date)
        )
    """)

    # --- Leagues ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS levels (
            id BIGSERIAL PRIMARY KEY,
            slug VARCHAR(32) UNIQUE NOT NULL,
            name VARCHAR(64) NOT NULL,
            rank_order INTEGER UNIQUE NOT NULL,
            min_score BIGINT NOT NULL DEFAULT 0,
            max_score BIGINT,
            icon VARCHAR(16),
            color VARCHAR(16)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_levels (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            level_id BIGINT NOT NULL REFERENCES levels(id) ON DELETE CASCADE,
            is_current BOOLEAN NOT NULL DEFAULT true,
            joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            left_at TIMESTAMPTZ,
            transition_type VARCHAR(16) NOT NULL DEFAULT 'initial',
            week_id VARCHAR(16)
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_user_levels_current
        ON user_levels(user_id) WHERE is_current
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_levels_level_current
        ON user_levels(level_id) WHERE is_current
    """)

    # --- Period snapshots ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS level_snapshots (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            level_id BIGINT NOT NULL REFERENCES levels(id) ON DELETE CASCADE,
            week_start DATE NOT NULL,
            week_end DATE NOT NULL,
            weekly_score BIGINT NOT NULL DEFAULT 0,
            rank_position INTEGER NOT NULL,
            total_members INTEGER NOT NULL,
            position_reward INTEGER NOT NULL DEFAULT 0,
            transition VARCHAR(16) NOT NULL DEFAULT 'retain',
            CONSTRAINT uq_level_snapshots_user_level_week UNIQUE (user_id, level_id, week_start)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_score_snapshots (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            period_type VARCHAR(16) NOT NULL,
            period_start DATE NOT NULL,
            period_end DATE NOT NULL,
            score BIGINT NOT NULL DEFAULT 0,
            rank_position INTEGER,
            CONSTRAINT uq_user_score_snapshots_period UNIQUE (user_id, period_type, period_start)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_score_snapshots_rank
        ON user_score_snapshots(period_type, period_start, rank_position)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS circle_score_snapshots (
            id BIGSERIAL PRIMARY KEY,
            circle_id BIGINT NOT NULL REFERENCES circles(id) ON DELETE CASCADE,
            period_type VARCHAR(16) NOT NULL,
            period_start DATE NOT NULL,
            period_end DATE NOT NULL,
            score BIGINT NOT NULL DEFAULT 0,
            member_count INTEGER NOT NULL DEFAULT 0,
            rank_position INTEGER,
            CONSTRAINT uq_circle_score_snapshots_period UNIQUE (circle_id, period_type, period_start)
        )
    """)

    # --- Notifications ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            type VARCHAR(32) NOT NULL,
            subtype VARCHAR(64) NOT NULL,
            title VARCHAR(256) NOT NULL,
            description TEXT,
            read BOOLEAN NOT NULL DEFAULT false,
            metadata JSONB DEFAULT '{}',
            expires_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_notifications_user_unread
        ON notifications(user_id, created_at DESC) WHERE NOT read
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS notifications CASCADE")
    op.execute("DROP TABLE IF EXISTS circle_score_snapshots CASCADE")
    op.execute("DROP TABLE IF EXISTS user_score_snapshots CASCADE")
    op.execute("DROP TABLE IF EXISTS level_snapshots CASCADE")
    op.execute("DROP TABLE IF EXISTS user_levels CASCADE")
    op.execute("DROP TABLE IF EXISTS levels CASCADE")
    op.execute("DROP TABLE IF EXISTS circle_task_contributions CASCADE")
    op.execute("DROP TABLE IF EXISTS circle_tasks CASCADE")
    op.execute("DROP TABLE IF EXISTS user_tasks CASCADE")
    op.execute("DROP TABLE IF EXISTS task_definitions CASCADE")
    op.execute("DROP TABLE IF EXISTS user_badges CASCADE")
    op.execute("DROP TABLE IF EXISTS badge_definitions CASCADE")
    op.execute("DROP TABLE IF EXISTS milestones CASCADE")
    op.execute("DROP TABLE IF EXISTS streaks CASCADE")
    op.execute("DROP TABLE IF EXISTS user_score_totals CASCADE")
    op.execute("DROP TABLE IF EXISTS points_ledger CASCADE")
    op.execute("DROP TABLE IF EXISTS events CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
    op.execute("DROP TABLE IF EXISTS circles CASCADE")
