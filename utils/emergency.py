"""
Emergency Broadcast Service
Single-active-per-organization override announcements
"""
import logging
from datetime import datetime
from typing import Optional
from sqlalchemy.exc import IntegrityError
from models import db, utcnow, Organization, Announcement, EmergencyBroadcast
from utils.clock import to_naive_utc
from utils.errors import ConflictError, NotFoundError, ValidationError
from utils.permissions import record_audit

logger = logging.getLogger(__name__)


def _now(now: Optional[datetime]) -> datetime:
    return to_naive_utc(now) if now is not None else utcnow()


def _deactivate_active(organization_id: int) -> int:
    # Bulk update runs immediately, ahead of the insert that follows it
    return EmergencyBroadcast.query.filter_by(organization_id=organization_id, active=True)\
        .update({'active': False}, synchronize_session='fetch')


def create_broadcast(organization_id: int, announcement_id: int,
                     expires_at: Optional[datetime] = None, user=None,
                     now: Optional[datetime] = None) -> EmergencyBroadcast:
    """
    Start an emergency broadcast, deactivating any current one

    Deactivation, insert and audit entry commit as one transaction. The
    organization row is locked first so concurrent creators serialize; the
    partial unique index is the last line of defense.

    Raises:
        NotFoundError: announcement missing or owned by another organization
        ValidationError: expires_at is not in the future
        ConflictError: another broadcast won a concurrent race
    """
    now = _now(now)

    organization = Organization.query.filter_by(id=organization_id).with_for_update().first()
    if organization is None:
        raise NotFoundError('Organization not found')

    announcement = Announcement.query.filter_by(id=announcement_id,
                                                organization_id=organization_id).first()
    if announcement is None:
        raise NotFoundError('Announcement not found')

    if expires_at is not None:
        expires_at = to_naive_utc(expires_at)
        if expires_at <= now:
            raise ValidationError('Expiry must be in the future')

    previous = EmergencyBroadcast.query.filter_by(organization_id=organization_id, active=True).all()
    previous_snapshot = [b.to_dict() for b in previous]

    try:
        _deactivate_active(organization_id)

        broadcast = EmergencyBroadcast(
            organization_id=organization_id,
            announcement_id=announcement.id,
            active=True,
            expires_at=expires_at,
            created_at=now
        )
        db.session.add(broadcast)
        db.session.flush()

        record_audit(organization_id, 'emergency.create', 'emergency', broadcast.id,
                     old_value={'deactivated': previous_snapshot} if previous_snapshot else None,
                     new_value=broadcast.to_dict(), user=user)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.warning(f"Concurrent emergency broadcast create for org {organization_id}")
        raise ConflictError('Another emergency broadcast was started at the same time')

    logger.warning(f"Emergency broadcast {broadcast.id} started for org {organization_id}: "
                   f"{announcement.title} (replaced {len(previous)})")
    return broadcast


def cancel_broadcast(organization_id: int, broadcast_id: int, user=None) -> EmergencyBroadcast:
    """
    Deactivate a broadcast; cancelling an inactive one is a no-op

    Raises:
        NotFoundError: broadcast missing or owned by another organization
    """
    broadcast = EmergencyBroadcast.query.filter_by(id=broadcast_id,
                                                   organization_id=organization_id).first()
    if broadcast is None:
        raise NotFoundError('Emergency broadcast not found')

    if not broadcast.active:
        return broadcast

    old_value = broadcast.to_dict()
    broadcast.active = False
    record_audit(organization_id, 'emergency.cancel', 'emergency', broadcast.id,
                 old_value=old_value, new_value=broadcast.to_dict(), user=user)
    db.session.commit()

    logger.info(f"Emergency broadcast {broadcast.id} cancelled for org {organization_id}")
    return broadcast


def get_active_broadcast(organization_id: int, now: Optional[datetime] = None) -> Optional[EmergencyBroadcast]:
    """
    Return the live broadcast for an organization, or None

    A broadcast whose expiry has passed is deactivated on read, so an expired
    broadcast is never reported even if the sweep job has not run yet.
    """
    now = _now(now)
    broadcast = EmergencyBroadcast.query.filter_by(organization_id=organization_id, active=True)\
        .order_by(EmergencyBroadcast.created_at.desc()).first()

    if broadcast is None:
        return None

    if not broadcast.is_live(now):
        broadcast.active = False
        db.session.commit()
        logger.info(f"Emergency broadcast {broadcast.id} expired at {broadcast.expires_at}")
        return None

    return broadcast


def sweep_expired_broadcasts(now: Optional[datetime] = None) -> int:
    """Deactivate every broadcast whose expiry has passed; returns the count"""
    now = _now(now)
    count = EmergencyBroadcast.query.filter(
        EmergencyBroadcast.active.is_(True),
        EmergencyBroadcast.expires_at.isnot(None),
        EmergencyBroadcast.expires_at <= now
    ).update({'active': False}, synchronize_session='fetch')
    db.session.commit()

    if count:
        logger.info(f"Expired {count} emergency broadcast(s)")
    return count
