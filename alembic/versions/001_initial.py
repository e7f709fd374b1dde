"""Initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# SQLAlchemy stores enum member names
chaintag = postgresql.ENUM('SOLANA', 'MONAD', name='chaintag', create_type=False)
tradetype = postgresql.ENUM('BUY', 'SELL', name='tradetype', create_type=False)


def upgrade() -> None:
    op.execute("CREATE TYPE chaintag AS ENUM ('SOLANA', 'MONAD')")
    op.execute("CREATE TYPE tradetype AS ENUM ('BUY', 'SELL')")

    # Agents
    op.create_table(
        'agents',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('bio', sa.Text(), nullable=True),
        sa.Column('avatar_url', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now()),
    )

    # Agent wallets
    op.create_table(
        'agent_wallets',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('agent_id', sa.String(36), sa.ForeignKey('agents.id'), nullable=False, index=True),
        sa.Column('chain', chaintag, nullable=False),
        sa.Column('wallet_address', sa.String(255), nullable=False, index=True),
        sa.Column('token_address', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('chain', 'wallet_address', name='uq_agent_wallets_chain_address'),
    )

    # Trades
    op.create_table(
        'trades',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('agent_id', sa.String(36), sa.ForeignKey('agents.id'), nullable=False, index=True),
        sa.Column('wallet_id', sa.String(36), sa.ForeignKey('agent_wallets.id'), nullable=False, index=True),
        sa.Column('chain', chaintag, nullable=False),
        sa.Column('tx_signature', sa.String(255), nullable=False),
        sa.Column('block_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('platform', sa.String(100), nullable=False),
        sa.Column('trade_type', tradetype, nullable=False),
        sa.Column('token_in_address', sa.String(255), nullable=False),
        sa.Column('token_in_amount', sa.String(78), nullable=False),
        sa.Column('token_in_symbol', sa.String(64), nullable=True),
        sa.Column('token_in_name', sa.String(255), nullable=True),
        sa.Column('token_out_address', sa.String(255), nullable=False),
        sa.Column('token_out_amount', sa.String(78), nullable=False),
        sa.Column('token_out_symbol', sa.String(64), nullable=True),
        sa.Column('token_out_name', sa.String(255), nullable=True),
        sa.Column('base_asset_amount', sa.String(78), nullable=False),
        sa.Column('base_asset_price_usd', sa.String(78), nullable=False),
        sa.Column('trade_value_usd', sa.String(78), nullable=False),
        sa.Column('is_buyback', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('tx_signature', 'chain', name='uq_trades_tx_chain'),
    )
    op.create_index('ix_trades_agent_block_time', 'trades', ['agent_id', 'block_time'])
    op.create_index('ix_trades_block_time', 'trades', ['block_time'])

    # Trade annotations
    op.create_table(
        'trade_annotations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('trade_id', sa.String(36), sa.ForeignKey('trades.id'), nullable=False, unique=True),
        sa.Column('strategy', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('tags', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now()),
    )

    # Token metadata cache
    op.create_table(
        'token_metadata',
        sa.Column('chain', chaintag, primary_key=True),
        sa.Column('address', sa.String(255), primary_key=True),
        sa.Column('symbol', sa.String(64), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('decimals', sa.Integer(), nullable=True),
        sa.Column('logo_url', sa.String(500), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now()),
    )

    # Agent token snapshots
    op.create_table(
        'token_snapshots',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('agent_id', sa.String(36), sa.ForeignKey('agents.id'), nullable=False),
        sa.Column('chain', chaintag, nullable=False),
        sa.Column('token_address', sa.String(255), nullable=False),
        sa.Column('price_usd', sa.String(78), nullable=False),
        sa.Column('market_cap_usd', sa.String(78), nullable=True),
        sa.Column('polled_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        'ix_token_snapshots_agent_token_time',
        'token_snapshots',
        ['agent_id', 'token_address', 'polled_at'],
    )

    # Derived positions
    op.create_table(
        'positions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('agent_id', sa.String(36), sa.ForeignKey('agents.id'), nullable=False),
        sa.Column('chain', chaintag, nullable=False),
        sa.Column('token_address', sa.String(255), nullable=False),
        sa.Column('quantity', sa.String(78), nullable=False),
        sa.Column('cost_basis', sa.String(78), nullable=False),
        sa.Column('cost_basis_usd', sa.String(78), nullable=False),
        sa.Column('realized_pnl', sa.String(78), nullable=False),
        sa.Column('realized_pnl_usd', sa.String(78), nullable=False),
        sa.Column('is_open', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now()),
        sa.UniqueConstraint('agent_id', 'chain', 'token_address', name='uq_positions_agent_chain_token'),
    )

    # Leaderboard
    op.create_table(
        'performance_rankings',
        sa.Column('agent_id', sa.String(36), sa.ForeignKey('agents.id'), primary_key=True),
        sa.Column('rank', sa.Integer(), nullable=False, index=True),
        sa.Column('total_pnl_usd', sa.String(78), nullable=False),
        sa.Column('win_rate', sa.String(78), nullable=False),
        sa.Column('total_trades', sa.Integer(), nullable=False),
        sa.Column('total_volume_usd', sa.String(78), nullable=False),
        sa.Column('buyback_total_usd', sa.String(78), nullable=False),
        sa.Column('token_price_change_24h', sa.String(78), nullable=True),
        sa.Column('ranked_at', sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table('performance_rankings')
    op.drop_table('positions')
    op.drop_index('ix_token_snapshots_agent_token_time', table_name='token_snapshots')
    op.drop_table('token_snapshots')
    op.drop_table('token_metadata')
    op.drop_table('trade_annotations')
    op.drop_index('ix_trades_block_time', table_name='trades')
    op.drop_index('ix_trades_agent_block_time', table_name='trades')
    op.drop_table('trades')
    op.drop_table('agent_wallets')
    op.drop_table('agents')

    op.execute("DROP TYPE IF EXISTS tradetype")
    op.execute("DROP TYPE IF EXISTS chaintag")
