"""
CareVoice Database Models
SQLAlchemy ORM models for organizations, rooms, devices, announcements,
schedules, emergency broadcasts, play logs and the audit trail
"""
from datetime import datetime, timezone
from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
import secrets
import enum

db = SQLAlchemy()


def utcnow():
    """Current UTC time as a naive datetime (storage format for all timestamps)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat_utc(value):
    """Serialize a stored naive-UTC timestamp as ISO-8601 with a Z suffix"""
    if value is None:
        return None
    return value.isoformat(timespec='milliseconds') + 'Z'


# ============================================================================
# ENUMERATIONS
# ============================================================================

class SubscriptionStatus(enum.Enum):
    TRIAL = 'TRIAL'
    ACTIVE = 'ACTIVE'
    PAST_DUE = 'PAST_DUE'
    CANCELED = 'CANCELED'


class UserRole(enum.Enum):
    """User role enumeration for RBAC"""
    OWNER = 'OWNER'  # Billing plus everything an admin can do
    ADMIN = 'ADMIN'  # Manage rooms, devices, announcements, schedules, broadcasts
    STAFF = 'STAFF'  # Read-only access to the dashboard


class DeviceStatus(enum.Enum):
    PENDING = 'PENDING'
    PAIRED = 'PAIRED'
    OFFLINE = 'OFFLINE'  # Advisory only; liveness is always derived from last_seen_at


class AnnouncementType(enum.Enum):
    TTS = 'TTS'
    MP3 = 'MP3'


class PlayStatus(enum.Enum):
    SCHEDULED = 'SCHEDULED'
    PLAYED = 'PLAYED'
    SKIPPED = 'SKIPPED'
    FAILED = 'FAILED'


# ============================================================================
# TENANCY
# ============================================================================

class Organization(db.Model):
    """Tenant root: owns rooms, devices, announcements and schedules"""
    __tablename__ = 'organizations'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    timezone = db.Column(db.String(64), nullable=False, default='America/New_York')
    subscription_status = db.Column(db.Enum(SubscriptionStatus), nullable=False,
                                    default=SubscriptionStatus.TRIAL)
    trial_ends_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    users = db.relationship('User', backref='organization', lazy='dynamic',
                            cascade='all, delete-orphan')
    rooms = db.relationship('Room', backref='organization', lazy='dynamic',
                            cascade='all, delete-orphan')
    devices = db.relationship('Device', backref='organization', lazy='dynamic',
                              cascade='all, delete-orphan')
    announcements = db.relationship('Announcement', backref='organization', lazy='dynamic',
                                    cascade='all, delete-orphan')
    schedules = db.relationship('Schedule', backref='organization', lazy='dynamic',
                                cascade='all, delete-orphan')
    emergency_broadcasts = db.relationship('EmergencyBroadcast', backref='organization',
                                           lazy='dynamic', cascade='all, delete-orphan')
    play_logs = db.relationship('PlayLog', backref='organization', lazy='dynamic',
                                cascade='all, delete-orphan')
    audit_logs = db.relationship('AuditLog', backref='organization', lazy='dynamic',
                                 cascade='all, delete-orphan')

    @property
    def has_active_subscription(self):
        """Mutations are allowed while trialing or paid up"""
        return self.subscription_status in (SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE)

    def to_summary(self):
        return {'id': self.id, 'name': self.name, 'timezone': self.timezone}

    def to_dict(self):
        return {
            **self.to_summary(),
            'subscriptionStatus': self.subscription_status.value,
            'trialEndsAt': isoformat_utc(self.trial_ends_at),
        }

    def __repr__(self):
        return f'<Organization {self.name} ({self.timezone})>'


class User(UserMixin, db.Model):
    """Dashboard user belonging to one organization"""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    name = db.Column(db.String(120), nullable=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.Enum(UserRole), default=UserRole.STAFF, nullable=False)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id', ondelete='CASCADE'),
                                nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True)  # type: ignore
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    last_login = db.Column(db.DateTime, nullable=True)

    def set_password(self, password):
        """Hash and set password"""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        """Verify password against hash"""
        return check_password_hash(self.password_hash, password)

    @property
    def can_manage(self):
        """Owners and admins manage resources; staff are read-only"""
        return self.role in (UserRole.OWNER, UserRole.ADMIN)

    @property
    def is_owner(self):
        return self.role == UserRole.OWNER

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': self.role.value,
            'organizationId': self.organization_id,
        }

    def __repr__(self):
        return f'<User {self.email} ({self.role.value})>'


class Room(db.Model):
    """Physical room devices and schedule items can be targeted at"""
    __tablename__ = 'rooms'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id', ondelete='CASCADE'),
                                nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Room deletion nulls out references instead of cascading
    devices = db.relationship('Device', backref='room')
    schedule_items = db.relationship('ScheduleItem', backref='room')
    play_logs = db.relationship('PlayLog')

    def to_summary(self):
        return {'id': self.id, 'name': self.name}

    def __repr__(self):
        return f'<Room {self.name}>'


# ============================================================================
# DEVICES
# ============================================================================

class Device(db.Model):
    """TV/tablet playback device"""
    __tablename__ = 'devices'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id', ondelete='CASCADE'),
                                nullable=False, index=True)
    room_id = db.Column(db.Integer, db.ForeignKey('rooms.id', ondelete='SET NULL'), nullable=True)
    status = db.Column(db.Enum(DeviceStatus), default=DeviceStatus.PENDING, nullable=False)
    pairing_code = db.Column(db.String(6), unique=True, nullable=True, index=True)
    pairing_expires_at = db.Column(db.DateTime, nullable=True)
    api_key_hash = db.Column(db.String(255), nullable=True)
    last_seen_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @staticmethod
    def generate_api_key():
        """Generate a secure random API key"""
        return secrets.token_urlsafe(32)

    @staticmethod
    def hash_api_key(api_key):
        """Hash API key for secure storage"""
        return generate_password_hash(api_key)

    def verify_api_key(self, api_key):
        """Verify API key against stored hash"""
        if not self.api_key_hash or not api_key:
            return False
        return check_password_hash(self.api_key_hash, api_key)

    def to_dict(self, now=None):
        from utils.device_session import is_online

        return {
            'id': self.id,
            'name': self.name,
            'status': self.status.value,
            'room': self.room.to_summary() if self.room else None,
            'pairingCode': self.pairing_code,
            'pairingExpiresAt': isoformat_utc(self.pairing_expires_at),
            'lastSeenAt': isoformat_utc(self.last_seen_at),
            'online': is_online(self.last_seen_at, now),
        }

    def __repr__(self):
        return f'<Device {self.name} ({self.status.value})>'


# ============================================================================
# CONTENT
# ============================================================================

class Announcement(db.Model):
    """Text-to-speech or uploaded MP3 announcement"""
    __tablename__ = 'announcements'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(100), nullable=False)
    type = db.Column(db.Enum(AnnouncementType), nullable=False)
    text = db.Column(db.Text, nullable=True)  # TTS only
    audio_url = db.Column(db.String(1024), nullable=True)  # MP3 only
    language = db.Column(db.String(20), nullable=False, default='en-US')
    voice = db.Column(db.String(100), nullable=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id', ondelete='CASCADE'),
                                nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Exactly one of text/audio_url is meaningful for the type tag
    __table_args__ = (
        db.CheckConstraint(
            "(type = 'TTS' AND text IS NOT NULL AND audio_url IS NULL) OR "
            "(type = 'MP3' AND audio_url IS NOT NULL AND text IS NULL)",
            name='check_announcement_variant'
        ),
    )

    schedule_items = db.relationship('ScheduleItem', backref='announcement', lazy='dynamic',
                                     cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'type': self.type.value,
            'text': self.text,
            'audioUrl': self.audio_url,
            'language': self.language,
            'voice': self.voice,
        }

    def __repr__(self):
        return f'<Announcement {self.title} ({self.type.value})>'


# ============================================================================
# SCHEDULING MODELS
# ============================================================================

class Schedule(db.Model):
    """Named collection of recurring announcement slots"""
    __tablename__ = 'schedules'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    active = db.Column(db.Boolean, default=True, nullable=False)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id', ondelete='CASCADE'),
                                nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    items = db.relationship('ScheduleItem', backref='schedule', lazy='dynamic',
                            cascade='all, delete-orphan')

    def ordered_items(self):
        return self.items.order_by(ScheduleItem.time_of_day, ScheduleItem.order, ScheduleItem.id).all()

    def to_dict(self, include_items=False):
        data = {
            'id': self.id,
            'name': self.name,
            'active': self.active,
            'itemCount': self.items.count(),
        }
        if include_items:
            data['items'] = [item.to_dict() for item in self.ordered_items()]
        return data

    def __repr__(self):
        return f'<Schedule {self.name} active={self.active}>'


class ScheduleItem(db.Model):
    """One recurring slot: announcement at HH:MM on a set of weekdays"""
    __tablename__ = 'schedule_items'

    id = db.Column(db.Integer, primary_key=True)
    schedule_id = db.Column(db.Integer, db.ForeignKey('schedules.id', ondelete='CASCADE'),
                            nullable=False, index=True)
    announcement_id = db.Column(db.Integer, db.ForeignKey('announcements.id', ondelete='CASCADE'),
                                nullable=False)
    room_id = db.Column(db.Integer, db.ForeignKey('rooms.id', ondelete='SET NULL'),
                        nullable=True)  # NULL = all rooms
    time_of_day = db.Column(db.String(5), nullable=False)  # Zero-padded "HH:MM", org-local
    days_of_week = db.Column(db.JSON, nullable=False)  # [0=Sunday .. 6=Saturday]
    enabled = db.Column(db.Boolean, default=True, nullable=False)
    order = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def runs_on(self, weekday):
        """True if this slot recurs on the given weekday (0=Sunday)"""
        return weekday in (self.days_of_week or [])

    def to_dict(self):
        return {
            'id': self.id,
            'scheduleId': self.schedule_id,
            'timeOfDay': self.time_of_day,
            'daysOfWeek': sorted(self.days_of_week or []),
            'enabled': self.enabled,
            'order': self.order,
            'room': self.room.to_summary() if self.room else None,
            'announcement': self.announcement.to_dict(),
        }

    def __repr__(self):
        return f'<ScheduleItem {self.time_of_day} days={self.days_of_week} order={self.order}>'


# ============================================================================
# EMERGENCY BROADCASTS
# ============================================================================

class EmergencyBroadcast(db.Model):
    """Org-wide announcement override"""
    __tablename__ = 'emergency_broadcasts'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id', ondelete='CASCADE'),
                                nullable=False, index=True)
    announcement_id = db.Column(db.Integer, db.ForeignKey('announcements.id', ondelete='CASCADE'),
                                nullable=False)
    active = db.Column(db.Boolean, default=True, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=True)  # NULL = until cancelled
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    announcement = db.relationship('Announcement', backref=db.backref(
        'emergency_broadcasts', lazy='dynamic', cascade='all, delete-orphan'))

    # At most one active broadcast per organization
    __table_args__ = (
        db.Index('uq_emergency_one_active_per_org', 'organization_id', unique=True,
                 postgresql_where=db.text('active'), sqlite_where=db.text('active')),
    )

    def is_live(self, now=None):
        """Active flag set and not yet expired (lazy expiry)"""
        if not self.active:
            return False
        now = now or utcnow()
        return self.expires_at is None or self.expires_at > now

    def to_dict(self):
        return {
            'id': self.id,
            'organizationId': self.organization_id,
            'active': self.active,
            'announcement': self.announcement.to_dict() if self.announcement else None,
            'expiresAt': isoformat_utc(self.expires_at),
            'createdAt': isoformat_utc(self.created_at),
        }

    def __repr__(self):
        return f'<EmergencyBroadcast {self.id} org={self.organization_id} active={self.active}>'


# ============================================================================
# PLAYBACK & AUDIT LOGS
# ============================================================================

class PlayLog(db.Model):
    """One playback attempt per (device, announcement, scheduled_at) slot"""
    __tablename__ = 'play_logs'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id', ondelete='CASCADE'),
                                nullable=False, index=True)
    room_id = db.Column(db.Integer, db.ForeignKey('rooms.id', ondelete='SET NULL'), nullable=True)
    device_id = db.Column(db.Integer, db.ForeignKey('devices.id', ondelete='SET NULL'), nullable=True)
    announcement_id = db.Column(db.Integer, db.ForeignKey('announcements.id', ondelete='SET NULL'),
                                nullable=True)
    scheduled_at = db.Column(db.DateTime, nullable=False, index=True)
    played_at = db.Column(db.DateTime, nullable=True)
    status = db.Column(db.Enum(PlayStatus), default=PlayStatus.SCHEDULED, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    device = db.relationship('Device', backref='play_logs')
    announcement = db.relationship('Announcement', backref='play_logs')

    __table_args__ = (
        db.UniqueConstraint('device_id', 'announcement_id', 'scheduled_at',
                            name='uq_play_log_slot'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'deviceId': self.device_id,
            'device': self.device.name if self.device else None,
            'announcementId': self.announcement_id,
            'announcement': self.announcement.title if self.announcement else None,
            'roomId': self.room_id,
            'scheduledAt': isoformat_utc(self.scheduled_at),
            'playedAt': isoformat_utc(self.played_at),
            'status': self.status.value,
        }

    def __repr__(self):
        return f'<PlayLog device={self.device_id} announcement={self.announcement_id} {self.status.value}>'


class AuditLog(db.Model):
    """Before/after snapshots of administrative mutations"""
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id', ondelete='CASCADE'),
                                nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    action = db.Column(db.String(100), nullable=False, index=True)  # emergency.create, device.delete, ...
    entity_type = db.Column(db.String(50), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True)
    old_value = db.Column(db.JSON, nullable=True)
    new_value = db.Column(db.JSON, nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'action': self.action,
            'entityType': self.entity_type,
            'entityId': self.entity_id,
            'oldValue': self.old_value,
            'newValue': self.new_value,
            'ipAddress': self.ip_address,
            'createdAt': isoformat_utc(self.created_at),
        }

    def __repr__(self):
        return f'<AuditLog {self.action} {self.entity_type}:{self.entity_id}>'
