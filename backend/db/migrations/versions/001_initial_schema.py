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

ASSOCIATION_TABLES: tuple[str, ...] = ('payment_methods', 'invoices')


def _association_columns() -> list[sa.Column]:
    return [
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('associated_object_id', sa.String(64), nullable=False),
        sa.Column('associated_object_type', sa.String(20), nullable=False, server_default='CONTACT'),
        sa.Column('portal_id', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=True),
    ]


def upgrade() -> None:
    # Organizations (tenants owning client records)
    op.create_table(
        'organizations',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    # HubSpot app installations: one row per portal
    op.create_table(
        'org_application_links',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('org_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('hubspot_portal_id', sa.String(64), nullable=False),
        sa.Column('installed_at', sa.DateTime(), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('hubspot_portal_id'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], )
    )
    op.create_index('ix_org_application_links_org_id', 'org_application_links', ['org_id'])

    # Clients synced from HubSpot contacts
    op.create_table(
        'clients',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('org_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('first_name', sa.String(255), nullable=True),
        sa.Column('last_name', sa.String(255), nullable=True),
        sa.Column('hubspot_portal_id', sa.String(64), nullable=False),
        sa.Column('hubspot_contact_id', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], )
    )
    op.create_index('ix_clients_org_id', 'clients', ['org_id'])
    # Target of INSERT ... ON CONFLICT in the client upsert
    op.create_unique_constraint(
        'uq_clients_hubspot_identity', 'clients', ['hubspot_portal_id', 'hubspot_contact_id']
    )

    # Association kinds, repointed on contact merges
    op.create_table(
        'payment_methods',
        *_association_columns(),
        sa.Column('label', sa.String(255), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table(
        'invoices',
        *_association_columns(),
        sa.Column('number', sa.String(64), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    for table in ASSOCIATION_TABLES:
        op.create_index(
            f'ix_{table}_associated_object',
            table,
            ['portal_id', 'associated_object_type', 'associated_object_id'],
        )

    # OAuth tokens, append-only; readers take the newest valid row
    op.create_table(
        'hubspot_tokens',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('portal_id', sa.String(64), nullable=False),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('expires_in', sa.Integer(), nullable=True),
        sa.Column('token_type', sa.String(32), nullable=True),
        sa.Column('is_valid', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_hubspot_tokens_portal_created', 'hubspot_tokens', ['portal_id', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_hubspot_tokens_portal_created', table_name='hubspot_tokens')
    op.drop_table('hubspot_tokens')
    for table in reversed(ASSOCIATION_TABLES):
        op.drop_index(f'ix_{table}_associated_object', table_name=table)
        op.drop_table(table)
    op.drop_constraint('uq_clients_hubspot_identity', 'clients', type_='unique')
    op.drop_index('ix_clients_org_id', table_name='clients')
    op.drop_table('clients')
    op.drop_index('ix_org_application_links_org_id', table_name='org_application_links')
    op.drop_table('org_application_links')
    op.drop_table('organizations')
