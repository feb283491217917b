from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


DEFAULT_SETTINGS_ID = "default"


class SystemSettings(db.Model):
    """
    Agency-wide settings (singleton row id="default").

    WHY: Lets the admin change the UPI collection id and the cylinder price
    without a redeploy. Config values are the fallback until a row exists.
    """
    __tablename__ = "system_settings"

    id = db.Column(db.String(32), primary_key=True, default=DEFAULT_SETTINGS_ID)
    upi_id = db.Column(db.String(100), nullable=True)
    upi_qr_image_url = db.Column(db.String(500), nullable=True)
    price_per_cylinder = db.Column(db.Integer, nullable=False, default=1100)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "upi_id": self.upi_id,
            "upi_qr_image_url": self.upi_qr_image_url,
            "price_per_cylinder": self.price_per_cylinder,
            "updated_at": to_utc_z(self.updated_at),
        }
