from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


CONTACT_NEW = "NEW"
CONTACT_OPEN = "OPEN"
CONTACT_RESOLVED = "RESOLVED"
CONTACT_ARCHIVED = "ARCHIVED"
VALID_CONTACT_STATUSES = {CONTACT_NEW, CONTACT_OPEN, CONTACT_RESOLVED, CONTACT_ARCHIVED}


class ContactMessage(db.Model):
    """Support ticket raised by a customer."""
    __tablename__ = "contact_messages"
    __table_args__ = (
        db.Index("ix_contact_messages_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    subject = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(50), nullable=True)
    priority = db.Column(db.String(16), nullable=True)
    related_booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=True)
    preferred_contact = db.Column(db.String(16), nullable=True)
    phone = db.Column(db.String(10), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=CONTACT_NEW)
    last_replied_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    user = db.relationship("User", backref=db.backref("contact_messages", lazy="dynamic"))
    replies = db.relationship("ContactReply", backref="message", lazy=True, order_by="ContactReply.id")

    def to_dict(self, *, include_replies: bool = False) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.user.name if self.user else None,
            "user_email": self.user.email if self.user else None,
            "subject": self.subject,
            "message": self.message,
            "category": self.category,
            "priority": self.priority,
            "related_booking_id": self.related_booking_id,
            "preferred_contact": self.preferred_contact,
            "phone": self.phone,
            "status": self.status,
            "last_replied_at": to_utc_z(self.last_replied_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_replies:
            data["replies"] = [r.to_dict() for r in self.replies]
        return data


class ContactReply(db.Model):
    __tablename__ = "contact_replies"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    message_id = db.Column(db.Integer, db.ForeignKey("contact_messages.id"), nullable=False, index=True)
    author_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    body = db.Column(db.Text, nullable=False)
    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    author = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "message_id": self.message_id,
            "author_id": self.author_id,
            "author_name": self.author.name if self.author else None,
            "body": self.body,
            "is_admin": self.is_admin,
            "created_at": to_utc_z(self.created_at),
        }
