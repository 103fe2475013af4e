from __future__ import annotations

from ..extensions import db
from shopcore.time_utils import utcnow, to_utc_z


class LifecycleMixin:
    """
    Unified audit/soft-delete lifecycle attached to every entity.

    WHY: Entities are never physically removed. Instead of a scattered
    is_deleted flag per table, every row carries the same created/updated/
    deleted timestamps plus actor ids, and every read goes through `active()`.

    Actor ids are plain integers (a customer, seller, or None for the system);
    they are audit data, not relationships.
    """
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    created_by = db.Column(db.Integer, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)
    deleted_by = db.Column(db.Integer, nullable=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def soft_delete(self, actor_id: int | None = None) -> None:
        if self.deleted_at is not None:
            return
        now = utcnow()
        self.deleted_at = now
        self.deleted_by = actor_id
        self.updated_at = now
        self.updated_by = actor_id

    def touch(self, actor_id: int | None = None) -> None:
        self.updated_at = utcnow()
        self.updated_by = actor_id

    def lifecycle_dict(self) -> dict:
        return {
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "deleted_by": self.deleted_by,
        }


def active(query, model):
    """The single "active records only" filter."""
    return query.filter(model.deleted_at.is_(None))
