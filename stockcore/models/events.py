from __future__ import annotations

from ..extensions import db
from stockcore.time_utils import to_utc_z


class Event(db.Model):
    """
    Append-only fact stream consumed by analytics and the audit UI.

    - One row per committed mutation, written in the same DB transaction
    - Never updated or deleted
    - created_at is system time (DB default)
    """
    __tablename__ = "events"
    __table_args__ = (
        db.Index("ix_events_tenant_type_created", "tenant_id", "event_type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    event_type = db.Column(db.String(64), nullable=False, index=True)  # stock.adjusted, order.created, ...
    payload = db.Column(db.JSON, nullable=False, default=dict)
    actor_id = db.Column(db.Integer, nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "event_type": self.event_type,
            "payload": self.payload or {},
            "actor_id": self.actor_id,
            "created_at": to_utc_z(self.created_at),
        }
