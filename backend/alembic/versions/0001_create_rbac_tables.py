"""Create scoped RBAC tables: catalogue, enablement, roles and user grants."""
from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision = "0001_create_rbac_tables"
down_revision = None
branch_labels = None
depends_on = None

_EXCLUSIVE_SCOPE_SQL = "(workspace_id IS NULL) != (company_id IS NULL)"


def _uuid(name: str, *, nullable: bool = False, **kwargs) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), nullable=nullable, **kwargs)


def _json(name: str) -> sa.Column:
    return sa.Column(name, sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=True)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "rbac_modules",
        _uuid("id", primary_key=True),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("display_name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _json("settings"),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_rbac_modules_code", "rbac_modules", ["code"], unique=True)
    op.create_index("ix_rbac_modules_category", "rbac_modules", ["category"])

    op.create_table(
        "rbac_resources",
        _uuid("id", primary_key=True),
        _uuid("module_id"),
        sa.Column("code", sa.String(length=100), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("display_name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("resource_type", sa.String(length=20), nullable=False),
        sa.Column("path", sa.String(length=255), nullable=True),
        _uuid("parent_resource_id", nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(("module_id",), ("rbac_modules.id",), ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ("parent_resource_id",), ("rbac_resources.id",), ondelete="CASCADE"
        ),
        sa.UniqueConstraint("module_id", "code", name="uq_rbac_resources_module_code"),
    )
    op.create_index("ix_rbac_resources_module_id", "rbac_resources", ["module_id"])
    op.create_index("ix_rbac_resources_code", "rbac_resources", ["code"])
    op.create_index(
        "ix_rbac_resources_parent_resource_id", "rbac_resources", ["parent_resource_id"]
    )

    op.create_table(
        "rbac_permissions",
        _uuid("id", primary_key=True),
        _uuid("resource_id"),
        sa.Column("action", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("display_name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _json("conditions"),
        *_timestamps(),
        sa.ForeignKeyConstraint(("resource_id",), ("rbac_resources.id",), ondelete="CASCADE"),
        sa.UniqueConstraint("resource_id", "action", name="uq_rbac_permissions_resource_action"),
        sa.UniqueConstraint("name", name="uq_rbac_permissions_name"),
    )
    op.create_index("ix_rbac_permissions_resource_id", "rbac_permissions", ["resource_id"])
    op.create_index("ix_rbac_permissions_action", "rbac_permissions", ["action"])

    # Per-company enablement switches; a missing row means enabled.
    for table, target, target_table in (
        ("rbac_company_modules", "module_id", "rbac_modules"),
        ("rbac_company_resources", "resource_id", "rbac_resources"),
    ):
        op.create_table(
            table,
            _uuid("id", primary_key=True),
            _uuid("company_id"),
            _uuid(target),
            sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            _uuid("toggled_by", nullable=True),
            sa.Column("toggled_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint((target,), (f"{target_table}.id",), ondelete="CASCADE"),
            sa.UniqueConstraint("company_id", target, name=f"uq_{table}"),
        )
        op.create_index(f"ix_{table}_company_id", table, ["company_id"])
        op.create_index(f"ix_{table}_{target}", table, [target])

    op.create_table(
        "rbac_roles",
        _uuid("id", primary_key=True),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("display_name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _uuid("workspace_id", nullable=True),
        _uuid("company_id", nullable=True),
        sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(_EXCLUSIVE_SCOPE_SQL, name="ck_rbac_roles_scope_exclusive"),
        sa.UniqueConstraint("workspace_id", "code", name="uq_rbac_roles_workspace_code"),
        sa.UniqueConstraint("company_id", "code", name="uq_rbac_roles_company_code"),
    )
    op.create_index("ix_rbac_roles_code", "rbac_roles", ["code"])
    op.create_index("ix_rbac_roles_workspace_id", "rbac_roles", ["workspace_id"])
    op.create_index("ix_rbac_roles_company_id", "rbac_roles", ["company_id"])

    op.create_table(
        "rbac_role_grants",
        _uuid("id", primary_key=True),
        _uuid("role_id"),
        _uuid("permission_id"),
        _uuid("workspace_id", nullable=True),
        _uuid("company_id", nullable=True),
        sa.Column("is_granted", sa.Boolean(), nullable=False, server_default=sa.true()),
        _uuid("granted_by", nullable=True),
        sa.Column(
            "granted_at",
            sa.DateTime(timezone=True),
            nullable=True,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        _json("conditions"),
        *_timestamps(),
        sa.ForeignKeyConstraint(("role_id",), ("rbac_roles.id",), ondelete="CASCADE"),
        sa.ForeignKeyConstraint(("permission_id",), ("rbac_permissions.id",), ondelete="CASCADE"),
        sa.CheckConstraint(_EXCLUSIVE_SCOPE_SQL, name="ck_rbac_role_grants_scope_exclusive"),
    )
    for column in ("role_id", "permission_id", "workspace_id", "company_id", "expires_at"):
        op.create_index(f"ix_rbac_role_grants_{column}", "rbac_role_grants", [column])
    op.create_index(
        "uq_rbac_role_grants_workspace_scope",
        "rbac_role_grants",
        ["role_id", "permission_id", "workspace_id"],
        unique=True,
        postgresql_where=sa.text("company_id IS NULL"),
        sqlite_where=sa.text("company_id IS NULL"),
    )
    op.create_index(
        "uq_rbac_role_grants_company_scope",
        "rbac_role_grants",
        ["role_id", "permission_id", "company_id"],
        unique=True,
        postgresql_where=sa.text("workspace_id IS NULL"),
        sqlite_where=sa.text("workspace_id IS NULL"),
    )

    op.create_table(
        "rbac_user_role_assignments",
        _uuid("id", primary_key=True),
        _uuid("user_id"),
        _uuid("role_id"),
        _uuid("workspace_id"),
        _uuid("company_id", nullable=True),
        _uuid("assigned_by", nullable=True),
        sa.Column(
            "assigned_at",
            sa.DateTime(timezone=True),
            nullable=True,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        *_timestamps(),
        sa.ForeignKeyConstraint(("role_id",), ("rbac_roles.id",), ondelete="CASCADE"),
    )
    for column in ("user_id", "role_id", "workspace_id", "company_id"):
        op.create_index(
            f"ix_rbac_user_role_assignments_{column}", "rbac_user_role_assignments", [column]
        )
    op.create_index(
        "uq_rbac_user_roles_workspace_scope",
        "rbac_user_role_assignments",
        ["user_id", "role_id", "workspace_id"],
        unique=True,
        postgresql_where=sa.text("company_id IS NULL"),
        sqlite_where=sa.text("company_id IS NULL"),
    )
    op.create_index(
        "uq_rbac_user_roles_company_scope",
        "rbac_user_role_assignments",
        ["user_id", "role_id", "workspace_id", "company_id"],
        unique=True,
        postgresql_where=sa.text("company_id IS NOT NULL"),
        sqlite_where=sa.text("company_id IS NOT NULL"),
    )

    op.create_table(
        "rbac_user_permission_grants",
        _uuid("id", primary_key=True),
        _uuid("user_id"),
        _uuid("permission_id"),
        _uuid("workspace_id"),
        _uuid("company_id", nullable=True),
        sa.Column("is_granted", sa.Boolean(), nullable=False, server_default=sa.true()),
        _uuid("granted_by", nullable=True),
        sa.Column(
            "granted_at",
            sa.DateTime(timezone=True),
            nullable=True,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        _json("conditions"),
        *_timestamps(),
        sa.ForeignKeyConstraint(("permission_id",), ("rbac_permissions.id",), ondelete="CASCADE"),
    )
    for column in ("user_id", "permission_id", "workspace_id", "company_id", "expires_at"):
        op.create_index(
            f"ix_rbac_user_permission_grants_{column}", "rbac_user_permission_grants", [column]
        )
    op.create_index(
        "uq_rbac_user_grants_workspace_scope",
        "rbac_user_permission_grants",
        ["user_id", "permission_id", "workspace_id"],
        unique=True,
        postgresql_where=sa.text("company_id IS NULL"),
        sqlite_where=sa.text("company_id IS NULL"),
    )
    op.create_index(
        "uq_rbac_user_grants_company_scope",
        "rbac_user_permission_grants",
        ["user_id", "permission_id", "workspace_id", "company_id"],
        unique=True,
        postgresql_where=sa.text("company_id IS NOT NULL"),
        sqlite_where=sa.text("company_id IS NOT NULL"),
    )


def downgrade() -> None:
    op.drop_table("rbac_user_permission_grants")
    op.drop_table("rbac_user_role_assignments")
    op.drop_table("rbac_role_grants")
    op.drop_table("rbac_roles")
    op.drop_table("rbac_company_resources")
    op.drop_table("rbac_company_modules")
    op.drop_table("rbac_permissions")
    op.drop_table("rbac_resources")
    op.drop_table("rbac_modules")
