"""Initial ladder schema: tournaments, rounds, groups, sets, streaks, rankings

Revision ID: 3c9e51a0d7b2
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# Revision identifiers, used by Alembic
revision: str = '3c9e51a0d7b2'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        'tournaments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('total_rounds', sa.Integer(), nullable=False),
        sa.Column('round_duration_days', sa.Integer(), nullable=True),
        sa.Column('max_comodines', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'players',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'tournament_players',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tournament_id', sa.Integer(), sa.ForeignKey('tournaments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('player_id', sa.Integer(), sa.ForeignKey('players.id', ondelete='CASCADE'), nullable=False),
        sa.Column('comodines_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('joined_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('tournament_id', 'player_id', name='uq_tournament_player'),
    )

    op.create_table(
        'rounds',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tournament_id', sa.Integer(), sa.ForeignKey('tournaments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('number', sa.Integer(), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('is_closed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('tournament_id', 'number', name='uq_round_tournament_number'),
    )

    op.create_table(
        'groups',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('round_id', sa.Integer(), sa.ForeignKey('rounds.id', ondelete='CASCADE'), nullable=False),
        sa.Column('number', sa.Integer(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING'),
        sa.Column('skipped_reason', sa.String(length=255), nullable=True),
        sa.UniqueConstraint('round_id', 'number', name='uq_group_round_number'),
    )

    # No unique constraint on (group_id, position): positions are rewritten in one batch
    op.create_table(
        'group_players',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('group_id', sa.Integer(), sa.ForeignKey('groups.id', ondelete='CASCADE'), nullable=False),
        sa.Column('player_id', sa.Integer(), sa.ForeignKey('players.id'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('points', sa.Float(), nullable=False, server_default='0'),
        sa.Column('streak', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('used_comodin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('comodin_mode', sa.String(length=20), nullable=True),
        sa.Column('comodin_points', sa.Float(), nullable=True),
        sa.Column('comodin_reason', sa.String(length=200), nullable=True),
        sa.Column('substitute_player_id', sa.Integer(), sa.ForeignKey('players.id'), nullable=True),
        sa.UniqueConstraint('group_id', 'player_id', name='uq_group_player'),
    )
    op.create_index('idx_group_players_player', 'group_players', ['player_id'])

    op.create_table(
        'matches',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('group_id', sa.Integer(), sa.ForeignKey('groups.id', ondelete='CASCADE'), nullable=False),
        sa.Column('set_number', sa.Integer(), nullable=False),
        sa.Column('team1_player1_id', sa.Integer(), sa.ForeignKey('players.id'), nullable=False),
        sa.Column('team1_player2_id', sa.Integer(), sa.ForeignKey('players.id'), nullable=False),
        sa.Column('team2_player1_id', sa.Integer(), sa.ForeignKey('players.id'), nullable=False),
        sa.Column('team2_player2_id', sa.Integer(), sa.ForeignKey('players.id'), nullable=False),
        sa.Column('team1_games', sa.Integer(), nullable=True),
        sa.Column('team2_games', sa.Integer(), nullable=True),
        sa.Column('tiebreak_score', sa.String(length=10), nullable=True),
        sa.Column('is_confirmed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reported_by_id', sa.Integer(), nullable=True),
        sa.Column('confirmed_by_id', sa.Integer(), nullable=True),
        sa.Column('admin_edited_by_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='NOT_REPORTED'),
        sa.Column('schedule_status', sa.String(length=20), nullable=False, server_default='PENDING'),
        sa.Column('proposed_date', sa.DateTime(), nullable=True),
        sa.Column('proposed_by_id', sa.Integer(), nullable=True),
        sa.Column('accepted_date', sa.DateTime(), nullable=True),
        sa.Column('accepted_by', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('group_id', 'set_number', name='uq_match_group_set'),
    )
    op.create_index('idx_matches_group_confirmed', 'matches', ['group_id', 'is_confirmed'])

    op.create_table(
        'streak_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('player_id', sa.Integer(), sa.ForeignKey('players.id'), nullable=False),
        sa.Column('round_id', sa.Integer(), sa.ForeignKey('rounds.id', ondelete='CASCADE'), nullable=False),
        sa.Column('group_id', sa.Integer(), sa.ForeignKey('groups.id', ondelete='CASCADE'), nullable=False),
        sa.Column('streak_type', sa.String(length=30), nullable=False),
        sa.Column('streak_count', sa.Integer(), nullable=False),
        sa.Column('bonus_points', sa.Float(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('idx_streak_history_round', 'streak_history', ['round_id'])

    op.create_table(
        'rankings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tournament_id', sa.Integer(), sa.ForeignKey('tournaments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('player_id', sa.Integer(), sa.ForeignKey('players.id'), nullable=False),
        sa.Column('round_number', sa.Integer(), nullable=False),
        sa.Column('total_points', sa.Float(), nullable=False),
        sa.Column('rounds_played', sa.Integer(), nullable=False),
        sa.Column('average_points', sa.Float(), nullable=False),
        sa.Column('sets_won', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('games_won', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('ironman_position', sa.Integer(), nullable=False),
        sa.Column('movement', sa.String(length=20), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('tournament_id', 'player_id', 'round_number', name='uq_ranking_player_round'),
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table('rankings')
    op.drop_index('idx_streak_history_round', table_name='streak_history')
    op.drop_table('streak_history')
    op.drop_index('idx_matches_group_confirmed', table_name='matches')
    op.drop_table('matches')
    op.drop_index('idx_group_players_player', table_name='group_players')
    op.drop_table('group_players')
    op.drop_table('groups')
    op.drop_table('rounds')
    op.drop_table('tournament_players')
    op.drop_table('players')
    op.drop_table('tournaments')
