"""Initial SSO schema

Revision ID: 001
Revises:
Create Date: 2026-10-01 00:00:00.000000

Creates the PostgreSQL schema for organization SSO:
- Organizations, users and memberships (read by login completion)
- SSO connections (one email domain per connection, unique globally)
- SSO states (single-use login attempt records)
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create organizations table
    op.create_table(
        "organizations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_organizations_name", "organizations", ["name"])
    op.create_index("ix_organizations_is_active", "organizations", ["is_active"])

    # Create users table
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_users_is_active", "users", ["is_active"])
    # Login completion looks accounts up case-insensitively
    op.create_index("ix_users_email_lower", "users", [sa.text("lower(email)")])

    # Create organization_members table
    op.create_table(
        "organization_members",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="member"),
        sa.Column("status", sa.String(20), nullable=False, server_default="invited"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("organization_id", "user_id", name="uq_organization_members_org_user"),
    )
    op.create_index("ix_organization_members_organization_id", "organization_members", ["organization_id"])
    op.create_index("ix_organization_members_user_id", "organization_members", ["user_id"])

    # Create sso_connections table
    op.create_table(
        "sso_connections",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("uuid", postgresql.UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("protocol", sa.String(10), nullable=False),  # saml, oidc
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("domain", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("config", postgresql.JSON(), nullable=True),
        sa.Column("sp_entity_id", sa.String(512), nullable=False, server_default=""),
        sa.Column("sp_acs_url", sa.String(512), nullable=False, server_default=""),
        sa.Column("sp_metadata", sa.Text(), nullable=True),
        sa.Column("default_role", sa.String(20), nullable=False, server_default="member"),
        sa.Column("auto_provision", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("jit_provisioning", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.CheckConstraint("protocol IN ('saml', 'oidc')", name="ck_sso_connections_protocol"),
    )
    op.create_index("ix_sso_connections_organization_id", "sso_connections", ["organization_id"])
    op.create_index("ix_sso_connections_domain", "sso_connections", ["domain"], unique=True)

    # Create sso_states table
    op.create_table(
        "sso_states",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("state", sa.String(512), nullable=False),
        sa.Column("connection_id", sa.Integer(), nullable=False),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("redirect_url", sa.String(2048), nullable=False, server_default=""),
        sa.Column("code_verifier", sa.String(512), nullable=False, server_default=""),
        sa.Column("nonce", sa.String(512), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["connection_id"], ["sso_connections.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_sso_states_state", "sso_states", ["state"], unique=True)
    op.create_index("ix_sso_states_connection_id", "sso_states", ["connection_id"])
    op.create_index("ix_sso_states_organization_id", "sso_states", ["organization_id"])
    op.create_index("ix_sso_states_expires_at", "sso_states", ["expires_at"])


def downgrade() -> None:
    # Drop tables in reverse order (respecting foreign keys)
    op.drop_table("sso_states")
    op.drop_table("sso_connections")
    op.drop_table("organization_members")
    op.drop_table("users")
    op.drop_table("organizations")
