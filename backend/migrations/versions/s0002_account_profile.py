"""account profile: phone number and saved addresses

Revision ID: s0002_account_profile
Revises: s0001_initial
Create Date: 2026-10-18 00:00:00.000000

- users.phone: optional contact number edited from the profile
- saved_addresses: per-customer address book reused at checkout
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 's0002_account_profile'
down_revision = 's0001_initial'
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.add_column(sa.Column('phone', sa.String(length=32), nullable=True))

    op.create_table(
        'saved_addresses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('label', sa.String(length=50), nullable=True),
        sa.Column('address', sa.JSON(), nullable=False),
        sa.Column('is_default', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_saved_addresses_user_id', 'saved_addresses', ['user_id'])
    op.create_index('ix_saved_addresses_user_default', 'saved_addresses', ['user_id', 'is_default'])


def downgrade():
    op.drop_table('saved_addresses')

    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.drop_column('phone')
