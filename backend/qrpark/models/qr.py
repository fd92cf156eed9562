from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class QRStatus:
    UNUSED = "UNUSED"
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"

    ALL = (UNUSED, ACTIVE, REVOKED)


class SerialCounter(db.Model):
    """
    Single authoritative counter per named sequence.

    WHY: Scanning max(serial) per allocation races under concurrent callers.
    Incrementing one row inside the allocating transaction serializes
    issuance and keeps the sequence gap-free.
    """
    __tablename__ = "serial_counters"

    name = db.Column(db.String(32), primary_key=True)
    last_value = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "last_value": self.last_value,
            "updated_at": to_utc_z(self.updated_at),
        }


class QRCodeData(db.Model):
    """
    A printed parking QR code.

    LIFECYCLE: UNUSED (allocated) -> ACTIVE (first redemption) -> REVOKED.
    serial_number is printed on the code and read by scanners, so its
    format (prefix + zero-padded sequence) must survive migrations.
    """
    __tablename__ = "qr_codes"
    __table_args__ = (
        db.Index("ix_qr_codes_status_sequence", "status", "sequence"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sequence = db.Column(db.Integer, nullable=False, unique=True)
    serial_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    # Opaque token encoded in the QR image
    code = db.Column(db.String(64), nullable=False, unique=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=QRStatus.UNUSED, index=True)

    generated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    owner_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    owner_name = db.Column(db.String(128), nullable=True)
    vehicle_number = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    activated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    owner = db.relationship("User", foreign_keys=[owner_user_id], backref=db.backref("activated_qr_codes", lazy=True))
    generated_by = db.relationship("User", foreign_keys=[generated_by_user_id])

    def __repr__(self) -> str:
        return f"<QRCodeData serial={self.serial_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "serial_number": self.serial_number,
            "code": self.code,
            "status": self.status,
            "generated_by_user_id": self.generated_by_user_id,
            "owner_user_id": self.owner_user_id,
            "owner_name": self.owner_name,
            "vehicle_number": self.vehicle_number,
            "created_at": to_utc_z(self.created_at),
            "activated_at": to_utc_z(self.activated_at),
            "revoked_at": to_utc_z(self.revoked_at),
            "revoked_reason": self.revoked_reason,
        }
