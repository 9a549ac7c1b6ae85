"""create_evm_decode_tables

Revision ID: 2026_02_03_101500
Revises:
Create Date: 2026-02-03 10:15:04.218861

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '2026_02_03_101500'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute('CREATE SCHEMA IF NOT EXISTS api')

    op.create_table(
        'evm_pending_decode',
        sa.Column('tx_id', sa.Text(), nullable=False),
        sa.Column('raw_bytes', sa.Text(), nullable=False),
        sa.Column('height', sa.BigInteger(), nullable=False),
        sa.Column('gas_used', sa.BigInteger(), nullable=True),
        sa.Column('known_hash', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('tx_id', name=op.f('pk_evm_pending_decode')),
        schema='api',
    )
    op.create_index('ix_evm_pending_decode_height', 'evm_pending_decode', ['height'], unique=False, schema='api')

    op.create_table(
        'evm_transactions',
        sa.Column('tx_id', sa.Text(), nullable=False),
        sa.Column('hash', sa.Text(), nullable=False),
        sa.Column('from', sa.Text(), nullable=False),
        sa.Column('to', sa.Text(), nullable=True),
        sa.Column('nonce', sa.BigInteger(), nullable=False),
        sa.Column('gas_limit', sa.BigInteger(), nullable=False),
        sa.Column('gas_price', sa.Numeric(), nullable=False),
        sa.Column('max_fee_per_gas', sa.Numeric(), nullable=True),
        sa.Column('max_priority_fee_per_gas', sa.Numeric(), nullable=True),
        sa.Column('value', sa.Numeric(), nullable=False),
        sa.Column('data', sa.Text(), nullable=True),
        sa.Column('type', sa.SmallInteger(), server_default='0', nullable=False),
        sa.Column('chain_id', sa.BigInteger(), nullable=True),
        sa.Column('gas_used', sa.BigInteger(), nullable=True),
        sa.Column('status', sa.SmallInteger(), server_default='1', nullable=False),
        sa.Column('function_name', sa.Text(), nullable=True),
        sa.Column('function_signature', sa.Text(), nullable=True),
        sa.Column('decoded_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('tx_id', name=op.f('pk_evm_transactions')),
        schema='api',
    )
    op.create_index('ix_evm_transactions_hash', 'evm_transactions', ['hash'], unique=False, schema='api')
    op.create_index('ix_evm_transactions_from', 'evm_transactions', ['from'], unique=False, schema='api')
    op.create_index('ix_evm_transactions_to', 'evm_transactions', ['to'], unique=False, schema='api')

    op.create_table(
        'evm_logs',
        sa.Column('tx_id', sa.Text(), nullable=False),
        sa.Column('log_index', sa.Integer(), nullable=False),
        sa.Column('address', sa.Text(), nullable=False),
        sa.Column('topics', postgresql.ARRAY(sa.Text()), nullable=False),
        sa.Column('data', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(
            ['tx_id'],
            ['api.evm_transactions.tx_id'],
            name=op.f('fk_evm_logs_tx_id_evm_transactions'),
            ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('tx_id', 'log_index', name=op.f('pk_evm_logs')),
        schema='api',
    )
    op.create_index('ix_evm_logs_address', 'evm_logs', ['address'], unique=False, schema='api')

    op.create_table(
        'evm_tokens',
        sa.Column('address', sa.Text(), nullable=False),
        sa.Column('type', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('symbol', sa.Text(), nullable=True),
        sa.Column('decimals', sa.Integer(), nullable=True),
        sa.Column('first_seen_tx', sa.Text(), nullable=True),
        sa.Column('first_seen_height', sa.BigInteger(), nullable=True),
        sa.PrimaryKeyConstraint('address', name=op.f('pk_evm_tokens')),
        schema='api',
    )
    op.create_index('ix_evm_tokens_symbol', 'evm_tokens', ['symbol'], unique=False, schema='api')

    op.create_table(
        'evm_token_transfers',
        sa.Column('tx_id', sa.Text(), nullable=False),
        sa.Column('log_index', sa.Integer(), nullable=False),
        sa.Column('token_address', sa.Text(), nullable=False),
        sa.Column('from_address', sa.Text(), nullable=False),
        sa.Column('to_address', sa.Text(), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(
            ['tx_id', 'log_index'],
            ['api.evm_logs.tx_id', 'api.evm_logs.log_index'],
            name=op.f('fk_evm_token_transfers_tx_id_evm_logs'),
            ondelete='CASCADE',
        ),
        sa.ForeignKeyConstraint(
            ['token_address'],
            ['api.evm_tokens.address'],
            name=op.f('fk_evm_token_transfers_token_address_evm_tokens'),
        ),
        sa.PrimaryKeyConstraint('tx_id', 'log_index', name=op.f('pk_evm_token_transfers')),
        schema='api',
    )
    op.create_index('ix_evm_token_transfers_from', 'evm_token_transfers', ['from_address'], unique=False, schema='api')
    op.create_index('ix_evm_token_transfers_to', 'evm_token_transfers', ['to_address'], unique=False, schema='api')
    op.create_index('ix_evm_token_transfers_token', 'evm_token_transfers', ['token_address'], unique=False, schema='api')

    op.create_table(
        'evm_contracts',
        sa.Column('address', sa.Text(), nullable=False),
        sa.Column('creator', sa.Text(), nullable=False),
        sa.Column('creation_tx', sa.Text(), nullable=False),
        sa.Column('creation_height', sa.BigInteger(), nullable=True),
        sa.Column('bytecode_hash', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('address', name=op.f('pk_evm_contracts')),
        schema='api',
    )
    op.create_index('ix_evm_contracts_creation_tx', 'evm_contracts', ['creation_tx'], unique=False, schema='api')
    op.create_index('ix_evm_contracts_creator', 'evm_contracts', ['creator'], unique=False, schema='api')


def downgrade() -> None:
    op.drop_index('ix_evm_contracts_creator', table_name='evm_contracts', schema='api')
    op.drop_index('ix_evm_contracts_creation_tx', table_name='evm_contracts', schema='api')
    op.drop_table('evm_contracts', schema='api')

    op.drop_index('ix_evm_token_transfers_token', table_name='evm_token_transfers', schema='api')
    op.drop_index('ix_evm_token_transfers_to', table_name='evm_token_transfers', schema='api')
    op.drop_index('ix_evm_token_transfers_from', table_name='evm_token_transfers', schema='api')
    op.drop_table('evm_token_transfers', schema='api')

    op.drop_index('ix_evm_tokens_symbol', table_name='evm_tokens', schema='api')
    op.drop_table('evm_tokens', schema='api')

    op.drop_index('ix_evm_logs_address', table_name='evm_logs', schema='api')
    op.drop_table('evm_logs', schema='api')

    op.drop_index('ix_evm_transactions_to', table_name='evm_transactions', schema='api')
    op.drop_index('ix_evm_transactions_from', table_name='evm_transactions', schema='api')
    op.drop_index('ix_evm_transactions_hash', table_name='evm_transactions', schema='api')
    op.drop_table('evm_transactions', schema='api')

    op.drop_index('ix_evm_pending_decode_height', table_name='evm_pending_decode', schema='api')
    op.drop_table('evm_pending_decode', schema='api')
