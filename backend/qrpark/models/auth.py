from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class BaseRole:
    """
    Coarse structural role carried on every user.

    SUPER_ADMIN is the elevated tag. It grants nothing by itself:
    fine-grained access always comes from the user's AccessRole.
    """
    SUPER_ADMIN = "SUPER_ADMIN"
    DISTRIBUTOR = "DISTRIBUTOR"
    RETAILER = "RETAILER"

    ALL = (SUPER_ADMIN, DISTRIBUTOR, RETAILER)
    ELEVATED = frozenset({SUPER_ADMIN})


class User(db.Model):
    """
    User accounts for attribution, access control and credit ownership.

    Identity is verified upstream; this table stores no credentials.

    ORPHANS: An elevated user (base_role SUPER_ADMIN) without an
    access_role_id has zero permissions. Never treat the base tag as
    implicit privilege.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_base_role_access_role", "base_role", "access_role_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)

    base_role = db.Column(db.String(32), nullable=False, default=BaseRole.RETAILER, index=True)

    # Nullable: cleared when the role is deleted (users own the relation)
    access_role_id = db.Column(db.Integer, db.ForeignKey("access_roles.id"), nullable=True, index=True)

    # Who onboarded this user (distributor -> retailer hierarchy)
    parent_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    access_role = db.relationship("AccessRole")
    parent = db.relationship("User", remote_side=[id], backref=db.backref("children", lazy=True))

    @property
    def is_elevated(self) -> bool:
        return self.base_role in BaseRole.ELEVATED

    @property
    def is_orphan(self) -> bool:
        return self.is_elevated and self.access_role_id is None

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "base_role": self.base_role,
            "access_role_id": self.access_role_id,
            "parent_id": self.parent_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class AccessRole(db.Model):
    """
    Named bundle of permissions.

    System roles (is_system=True) are seeded at bootstrap and cannot be
    edited or deleted by ordinary tooling. Custom roles can be deleted,
    which first unlinks every user and then cascades to permissions.
    """
    __tablename__ = "access_roles"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True, index=True)
    description = db.Column(db.Text, nullable=True)
    is_system = db.Column(db.Boolean, nullable=False, default=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    permissions = db.relationship(
        "Permission",
        backref="role",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="Permission.resource",
    )

    def __repr__(self) -> str:
        return f"<AccessRole id={self.id} name={self.name!r} system={self.is_system}>"

    def to_dict(self, include_permissions: bool = True) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_system": self.is_system,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_permissions:
            data["permissions"] = [p.to_dict() for p in self.permissions]
        return data


class Permission(db.Model):
    """
    A (resource, action-set) grant owned by exactly one role.

    Actions are stored comma-separated ("view,create,edit"), one row per
    resource per role.
    """
    __tablename__ = "access_permissions"
    __table_args__ = (
        db.UniqueConstraint("role_id", "resource", name="uq_access_permissions_role_resource"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    role_id = db.Column(
        db.Integer,
        db.ForeignKey("access_roles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    resource = db.Column(db.String(64), nullable=False)
    actions = db.Column(db.String(255), nullable=False, default="")

    granted_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def action_set(self) -> frozenset[str]:
        return frozenset(a for a in (self.actions or "").split(",") if a)

    def allows(self, action: str) -> bool:
        return action in self.action_set

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role_id": self.role_id,
            "resource": self.resource,
            "actions": sorted(self.action_set),
            "granted_at": to_utc_z(self.granted_at),
        }
