"""
Admin Routes Blueprint
Organization dashboard JSON API: authentication, rooms, devices, announcements,
schedules, emergency broadcasts and play history
"""
from datetime import date, timedelta
from flask import Blueprint, request, jsonify, current_app
from flask_login import login_user, logout_user, login_required, current_user
from flask_wtf.csrf import generate_csrf
from werkzeug.exceptions import HTTPException

from models import (db, utcnow, User, Room, Device, DeviceStatus, Announcement, AnnouncementType,
                    Schedule, ScheduleItem)
from utils.clock import get_zone, local_today
from utils.device_session import issue_pairing_code, unpair_device, online_device_count
from utils.emergency import create_broadcast, cancel_broadcast, get_active_broadcast
from utils.errors import CareVoiceError, NotFoundError, ValidationError
from utils.permissions import manager_required, subscription_required, record_audit, get_recent_audit
from utils.play_log import recent_play_logs, parse_timestamp
from utils.schedule_utils import (resolve_schedule_for_date, validate_time_of_day,
                                  validate_days_of_week, days_display)

admin_bp = Blueprint('admin', __name__)

MAX_LIST_LIMIT = 500


def _json():
    return request.get_json(silent=True) or {}


def _org_id():
    return current_user.organization_id


def _get_owned(model, entity_id, label):
    """Fetch an entity scoped to the current user's organization or raise NotFoundError"""
    entity = model.query.filter_by(id=entity_id, organization_id=_org_id()).first()
    if entity is None:
        raise NotFoundError(f'{label} not found')
    return entity


def _optional_room(room_id):
    """Resolve an optional roomId; None means all rooms / no room"""
    if room_id is None:
        return None
    if isinstance(room_id, bool) or not isinstance(room_id, int):
        raise ValidationError('roomId must be an integer')
    return _get_owned(Room, room_id, 'Room')


def _required_name(data, key='name', max_length=100):
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f'{key} is required')
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f'{key} must be at most {max_length} characters')
    return value


def _limit_arg(default=50):
    try:
        limit = int(request.args.get('limit', default))
    except ValueError:
        raise ValidationError('limit must be an integer')
    return max(1, min(limit, MAX_LIST_LIMIT))


def _plan_limit(count, key, label):
    limit = current_app.config[key]
    if count >= limit:
        raise CareVoiceError(f'Plan limit reached: at most {limit} {label}', 403)


# ============================================================================
# AUTHENTICATION ROUTES
# ============================================================================

@admin_bp.route('/csrf-token', methods=['GET'])
def csrf_token():
    """Token for the X-CSRFToken header on mutating requests"""
    return jsonify({'csrfToken': generate_csrf()})


@admin_bp.route('/login', methods=['POST'])
def login():
    """Email/password session login"""
    data = _json()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    user = User.query.filter_by(email=email).first()
    if user is None or not user.check_password(password):
        current_app.logger.warning(f'Failed login attempt for {email} from {request.remote_addr}')
        return jsonify({'error': 'Invalid email or password'}), 401

    if not user.is_active:
        return jsonify({'error': 'Your account has been disabled'}), 403

    login_user(user, remember=bool(data.get('remember')))
    user.last_login = utcnow()
    db.session.commit()

    current_app.logger.info(f'User {user.email} logged in')
    return jsonify({'user': user.to_dict(), 'organization': user.organization.to_dict()})


@admin_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    current_app.logger.info(f'User {current_user.email} logged out')
    logout_user()
    return jsonify({'success': True})


@admin_bp.route('/me', methods=['GET'])
@login_required
def me():
    organization = current_user.organization
    return jsonify({
        'user': current_user.to_dict(),
        'organization': organization.to_dict(),
        'stats': {
            'rooms': organization.rooms.count(),
            'devices': organization.devices.count(),
            'onlineDevices': online_device_count(organization.id),
            'announcements': organization.announcements.count(),
            'schedules': organization.schedules.count(),
        }
    })


# ============================================================================
# ORGANIZATION
# ============================================================================

@admin_bp.route('/organization', methods=['PUT'])
@login_required
@manager_required
@subscription_required
def update_organization():
    """Rename the organization or change its timezone"""
    organization = current_user.organization
    data = _json()
    old_value = organization.to_dict()

    if 'name' in data:
        organization.name = _required_name(data, max_length=200)
    if 'timezone' in data:
        tz_name = data.get('timezone')
        if not isinstance(tz_name, str):
            raise ValidationError('timezone must be a string')
        get_zone(tz_name)
        organization.timezone = tz_name

    record_audit(organization.id, 'organization.update', 'organization', organization.id,
                 old_value=old_value, new_value=organization.to_dict())
    db.session.commit()
    return jsonify(organization.to_dict())


# ============================================================================
# ROOMS
# ============================================================================

@admin_bp.route('/rooms', methods=['GET'])
@login_required
def list_rooms():
    rooms = Room.query.filter_by(organization_id=_org_id()).order_by(Room.name).all()
    return jsonify([{**r.to_summary(), 'deviceCount': len(r.devices)} for r in rooms])


@admin_bp.route('/rooms', methods=['POST'])
@login_required
@manager_required
@subscription_required
def create_room():
    data = _json()
    name = _required_name(data)
    _plan_limit(Room.query.filter_by(organization_id=_org_id()).count(), 'PLAN_MAX_ROOMS', 'rooms')

    room = Room(name=name, organization_id=_org_id())
    db.session.add(room)
    db.session.commit()

    current_app.logger.info(f'Room created: {room.name} (org {room.organization_id})')
    return jsonify(room.to_summary()), 201


@admin_bp.route('/rooms/<int:room_id>', methods=['PUT'])
@login_required
@manager_required
@subscription_required
def update_room(room_id):
    room = _get_owned(Room, room_id, 'Room')
    room.name = _required_name(_json())
    db.session.commit()
    return jsonify(room.to_summary())


@admin_bp.route('/rooms/<int:room_id>', methods=['DELETE'])
@login_required
@manager_required
@subscription_required
def delete_room(room_id):
    """Devices and schedule items in the room fall back to no room / all rooms"""
    room = _get_owned(Room, room_id, 'Room')
    db.session.delete(room)
    db.session.commit()

    current_app.logger.info(f'Room deleted: {room_id}')
    return jsonify({'success': True})


# ============================================================================
# DEVICES
# ============================================================================

@admin_bp.route('/devices', methods=['GET'])
@login_required
def list_devices():
    now = utcnow()
    devices = Device.query.filter_by(organization_id=_org_id()).order_by(Device.name).all()
    return jsonify([d.to_dict(now) for d in devices])


@admin_bp.route('/devices', methods=['POST'])
@login_required
@manager_required
@subscription_required
def create_device():
    """Create a PENDING device and issue its first pairing code"""
    data = _json()
    name = _required_name(data)
    room = _optional_room(data.get('roomId'))
    _plan_limit(Device.query.filter_by(organization_id=_org_id()).count(), 'PLAN_MAX_DEVICES', 'devices')

    device = Device(
        name=name,
        organization_id=_org_id(),
        room_id=room.id if room else None,
        status=DeviceStatus.PENDING
    )
    db.session.add(device)
    db.session.flush()

    record_audit(_org_id(), 'device.create', 'device', device.id, new_value={'name': name, 'roomId': device.room_id})
    issue_pairing_code(device)

    current_app.logger.info(f'Device created: {device.name} (org {device.organization_id})')
    return jsonify(device.to_dict()), 201


@admin_bp.route('/devices/<int:device_id>', methods=['PUT'])
@login_required
@manager_required
@subscription_required
def update_device(device_id):
    device = _get_owned(Device, device_id, 'Device')
    data = _json()
    old_value = device.to_dict()

    if 'name' in data:
        device.name = _required_name(data)
    if 'roomId' in data:
        room = _optional_room(data.get('roomId'))
        device.room_id = room.id if room else None

    db.session.flush()
    db.session.refresh(device)
    record_audit(_org_id(), 'device.update', 'device', device.id,
                 old_value=old_value, new_value=device.to_dict())
    db.session.commit()
    return jsonify(device.to_dict())


@admin_bp.route('/devices/<int:device_id>', methods=['DELETE'])
@login_required
@manager_required
@subscription_required
def delete_device(device_id):
    device = _get_owned(Device, device_id, 'Device')
    record_audit(_org_id(), 'device.delete', 'device', device.id, old_value=device.to_dict())
    db.session.delete(device)
    db.session.commit()

    current_app.logger.info(f'Device deleted: {device_id}')
    return jsonify({'success': True})


@admin_bp.route('/devices/<int:device_id>/pairing-code', methods=['POST'])
@login_required
@manager_required
@subscription_required
def regenerate_pairing_code(device_id):
    """Fresh code for a PENDING device; a PAIRED device is a 409"""
    device = _get_owned(Device, device_id, 'Device')
    code = issue_pairing_code(device)
    return jsonify({
        'pairingCode': code,
        'pairingExpiresAt': device.to_dict()['pairingExpiresAt']
    })


@admin_bp.route('/devices/<int:device_id>/unpair', methods=['POST'])
@login_required
@manager_required
@subscription_required
def unpair(device_id):
    """Revoke a device's key so it has to pair again"""
    device = _get_owned(Device, device_id, 'Device')
    old_value = device.to_dict()
    record_audit(_org_id(), 'device.unpair', 'device', device.id, old_value=old_value)
    unpair_device(device)
    return jsonify(device.to_dict())


# ============================================================================
# ANNOUNCEMENTS
# ============================================================================

def _apply_announcement_fields(announcement, data):
    """Validate and apply title/type/text/audioUrl/language/voice; enforces the TTS/MP3 variant"""
    if 'title' in data or announcement.title is None:
        announcement.title = _required_name(data, 'title')

    if 'type' in data or announcement.type is None:
        try:
            announcement.type = AnnouncementType(data.get('type'))
        except ValueError:
            raise ValidationError('type must be TTS or MP3')

    if 'language' in data:
        announcement.language = _required_name(data, 'language', max_length=20)
    if 'voice' in data:
        voice = data.get('voice')
        announcement.voice = voice.strip() if isinstance(voice, str) and voice.strip() else None

    text = data.get('text', announcement.text)
    audio_url = data.get('audioUrl', announcement.audio_url)

    if announcement.type == AnnouncementType.TTS:
        if not isinstance(text, str) or not text.strip():
            raise ValidationError('text is required for TTS announcements')
        announcement.text = text.strip()
        announcement.audio_url = None
    else:
        if not isinstance(audio_url, str) or not audio_url.strip():
            raise ValidationError('audioUrl is required for MP3 announcements')
        announcement.audio_url = audio_url.strip()
        announcement.text = None


@admin_bp.route('/announcements', methods=['GET'])
@login_required
def list_announcements():
    announcements = Announcement.query.filter_by(organization_id=_org_id())\
        .order_by(Announcement.title).all()
    return jsonify([a.to_dict() for a in announcements])


@admin_bp.route('/announcements', methods=['POST'])
@login_required
@manager_required
@subscription_required
def create_announcement():
    announcement = Announcement(organization_id=_org_id(), language='en-US')
    _apply_announcement_fields(announcement, _json())
    db.session.add(announcement)
    db.session.commit()

    current_app.logger.info(f'Announcement created: {announcement.title} ({announcement.type.value})')
    return jsonify(announcement.to_dict()), 201


@admin_bp.route('/announcements/<int:announcement_id>', methods=['PUT'])
@login_required
@manager_required
@subscription_required
def update_announcement(announcement_id):
    announcement = _get_owned(Announcement, announcement_id, 'Announcement')
    _apply_announcement_fields(announcement, _json())
    db.session.commit()
    return jsonify(announcement.to_dict())


@admin_bp.route('/announcements/<int:announcement_id>', methods=['DELETE'])
@login_required
@manager_required
@subscription_required
def delete_announcement(announcement_id):
    """Removes the announcement along with its schedule items and broadcasts"""
    announcement = _get_owned(Announcement, announcement_id, 'Announcement')
    db.session.delete(announcement)
    db.session.commit()

    current_app.logger.info(f'Announcement deleted: {announcement_id}')
    return jsonify({'success': True})


# ============================================================================
# SCHEDULES
# ============================================================================

@admin_bp.route('/schedules', methods=['GET'])
@login_required
def list_schedules():
    schedules = Schedule.query.filter_by(organization_id=_org_id()).order_by(Schedule.name).all()
    return jsonify([s.to_dict() for s in schedules])


@admin_bp.route('/schedules/<int:schedule_id>', methods=['GET'])
@login_required
def get_schedule(schedule_id):
    schedule = _get_owned(Schedule, schedule_id, 'Schedule')
    return jsonify(schedule.to_dict(include_items=True))


@admin_bp.route('/schedules', methods=['POST'])
@login_required
@manager_required
@subscription_required
def create_schedule():
    data = _json()
    schedule = Schedule(
        name=_required_name(data),
        active=bool(data.get('active', True)),
        organization_id=_org_id()
    )
    db.session.add(schedule)
    db.session.flush()

    record_audit(_org_id(), 'schedule.create', 'schedule', schedule.id, new_value=schedule.to_dict())
    db.session.commit()
    return jsonify(schedule.to_dict()), 201


@admin_bp.route('/schedules/<int:schedule_id>', methods=['PUT'])
@login_required
@manager_required
@subscription_required
def update_schedule(schedule_id):
    schedule = _get_owned(Schedule, schedule_id, 'Schedule')
    data = _json()
    old_value = schedule.to_dict()

    if 'name' in data:
        schedule.name = _required_name(data)
    if 'active' in data:
        schedule.active = bool(data.get('active'))

    record_audit(_org_id(), 'schedule.update', 'schedule', schedule.id,
                 old_value=old_value, new_value=schedule.to_dict())
    db.session.commit()
    return jsonify(schedule.to_dict())


@admin_bp.route('/schedules/<int:schedule_id>', methods=['DELETE'])
@login_required
@manager_required
@subscription_required
def delete_schedule(schedule_id):
    schedule = _get_owned(Schedule, schedule_id, 'Schedule')
    record_audit(_org_id(), 'schedule.delete', 'schedule', schedule.id,
                 old_value=schedule.to_dict(include_items=True))
    db.session.delete(schedule)
    db.session.commit()
    return jsonify({'success': True})


# ============================================================================
# SCHEDULE ITEMS
# ============================================================================

def _get_item(schedule, item_id):
    item = schedule.items.filter_by(id=item_id).first()
    if item is None:
        raise NotFoundError('Schedule item not found')
    return item


def _apply_item_fields(item, data):
    if 'announcementId' in data or item.announcement_id is None:
        announcement_id = data.get('announcementId')
        if isinstance(announcement_id, bool) or not isinstance(announcement_id, int):
            raise ValidationError('announcementId is required')
        item.announcement_id = _get_owned(Announcement, announcement_id, 'Announcement').id

    if 'roomId' in data:
        room = _optional_room(data.get('roomId'))
        item.room_id = room.id if room else None

    if 'timeOfDay' in data or item.time_of_day is None:
        item.time_of_day = validate_time_of_day(data.get('timeOfDay'))

    if 'daysOfWeek' in data or item.days_of_week is None:
        item.days_of_week = validate_days_of_week(data.get('daysOfWeek'))

    if 'enabled' in data:
        item.enabled = bool(data.get('enabled'))

    if 'order' in data:
        order = data.get('order')
        if isinstance(order, bool) or not isinstance(order, int):
            raise ValidationError('order must be an integer')
        item.order = order


@admin_bp.route('/schedules/<int:schedule_id>/items', methods=['GET'])
@login_required
def list_schedule_items(schedule_id):
    schedule = _get_owned(Schedule, schedule_id, 'Schedule')
    return jsonify([
        {**item.to_dict(), 'daysDisplay': days_display(item.days_of_week)}
        for item in schedule.ordered_items()
    ])


@admin_bp.route('/schedules/<int:schedule_id>/items', methods=['POST'])
@login_required
@manager_required
@subscription_required
def create_schedule_item(schedule_id):
    """New item; order defaults to one past the schedule's current last"""
    schedule = _get_owned(Schedule, schedule_id, 'Schedule')
    item = ScheduleItem(schedule_id=schedule.id, enabled=True)
    _apply_item_fields(item, _json())

    if item.order is None:
        last = schedule.items.order_by(ScheduleItem.order.desc()).first()
        item.order = last.order + 1 if last else 0

    db.session.add(item)
    db.session.flush()
    record_audit(_org_id(), 'schedule_item.create', 'schedule', schedule.id, new_value=item.to_dict())
    db.session.commit()
    return jsonify(item.to_dict()), 201


@admin_bp.route('/schedules/<int:schedule_id>/items/<int:item_id>', methods=['PUT'])
@login_required
@manager_required
@subscription_required
def update_schedule_item(schedule_id, item_id):
    schedule = _get_owned(Schedule, schedule_id, 'Schedule')
    item = _get_item(schedule, item_id)
    old_value = item.to_dict()

    _apply_item_fields(item, _json())
    db.session.flush()
    db.session.refresh(item)

    record_audit(_org_id(), 'schedule_item.update', 'schedule', schedule.id,
                 old_value=old_value, new_value=item.to_dict())
    db.session.commit()
    return jsonify(item.to_dict())


@admin_bp.route('/schedules/<int:schedule_id>/items/<int:item_id>', methods=['DELETE'])
@login_required
@manager_required
@subscription_required
def delete_schedule_item(schedule_id, item_id):
    schedule = _get_owned(Schedule, schedule_id, 'Schedule')
    item = _get_item(schedule, item_id)

    record_audit(_org_id(), 'schedule_item.delete', 'schedule', schedule.id, old_value=item.to_dict())
    db.session.delete(item)
    db.session.commit()
    return jsonify({'success': True})


@admin_bp.route('/schedules/<int:schedule_id>/items/order', methods=['PUT'])
@login_required
@manager_required
@subscription_required
def reorder_schedule_items(schedule_id):
    """
    Reassign tie-break order for items sharing a time

    Request JSON:
    [{"id": 4, "order": 0}, {"id": 9, "order": 1}]
    """
    schedule = _get_owned(Schedule, schedule_id, 'Schedule')
    data = request.get_json(silent=True)
    if not isinstance(data, list) or not data:
        raise ValidationError('Expected a list of {id, order}')

    items = {item.id: item for item in schedule.items.all()}
    for entry in data:
        if not isinstance(entry, dict):
            raise ValidationError('Expected a list of {id, order}')
        item_id, order = entry.get('id'), entry.get('order')
        if item_id not in items:
            raise NotFoundError(f'Schedule item {item_id} not found')
        if isinstance(order, bool) or not isinstance(order, int):
            raise ValidationError('order must be an integer')
        items[item_id].order = order

    record_audit(_org_id(), 'schedule_item.reorder', 'schedule', schedule.id, new_value=data)
    db.session.commit()
    return jsonify([item.to_dict() for item in schedule.ordered_items()])


@admin_bp.route('/schedule-preview', methods=['GET'])
@login_required
def schedule_preview():
    """Resolve what a room would play on an org-local date (defaults to today)"""
    organization = current_user.organization

    room_id = request.args.get('roomId', type=int)
    if room_id is not None:
        _get_owned(Room, room_id, 'Room')

    date_arg = request.args.get('date')
    if date_arg:
        try:
            day = date.fromisoformat(date_arg)
        except ValueError:
            raise ValidationError('date must be YYYY-MM-DD')
    else:
        day = local_today(organization.timezone)

    slots = resolve_schedule_for_date(organization.id, room_id, day)
    return jsonify({
        'date': day.isoformat(),
        'timezone': organization.timezone,
        'roomId': room_id,
        'items': [slot.to_dict() for slot in slots]
    })


# ============================================================================
# EMERGENCY BROADCAST
# ============================================================================

@admin_bp.route('/emergency', methods=['GET'])
@login_required
def get_emergency():
    broadcast = get_active_broadcast(_org_id())
    if broadcast is None:
        return jsonify({'active': False})
    return jsonify(broadcast.to_dict())


@admin_bp.route('/emergency', methods=['POST'])
@login_required
@manager_required
@subscription_required
def start_emergency():
    """
    Start an emergency broadcast, replacing any active one

    Request JSON:
    {
        "announcementId": 5,
        "expiresAt": "2025-10-31T15:00:00Z",   (optional)
        "durationMinutes": 30                  (optional, alternative to expiresAt)
    }
    """
    data = _json()
    announcement_id = data.get('announcementId')
    if isinstance(announcement_id, bool) or not isinstance(announcement_id, int):
        raise ValidationError('announcementId is required')

    expires_at = None
    if data.get('expiresAt'):
        expires_at = parse_timestamp(data.get('expiresAt'), field='expiresAt')
    elif data.get('durationMinutes') is not None:
        minutes = data.get('durationMinutes')
        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
            raise ValidationError('durationMinutes must be a positive integer')
        expires_at = utcnow() + timedelta(minutes=minutes)

    broadcast = create_broadcast(_org_id(), announcement_id, expires_at, user=current_user)
    return jsonify(broadcast.to_dict()), 201


@admin_bp.route('/emergency/<int:broadcast_id>', methods=['DELETE'])
@login_required
@manager_required
def stop_emergency(broadcast_id):
    """Cancel a broadcast; always allowed, even with a lapsed subscription"""
    broadcast = cancel_broadcast(_org_id(), broadcast_id, user=current_user)
    return jsonify(broadcast.to_dict())


# ============================================================================
# HISTORY
# ============================================================================

@admin_bp.route('/play-logs', methods=['GET'])
@login_required
def play_logs():
    return jsonify([log.to_dict() for log in recent_play_logs(_org_id(), _limit_arg())])


@admin_bp.route('/audit-logs', methods=['GET'])
@login_required
@manager_required
def audit_logs():
    return jsonify([entry.to_dict() for entry in get_recent_audit(_org_id(), _limit_arg())])


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@admin_bp.errorhandler(CareVoiceError)
def admin_carevoice_error(error):
    db.session.rollback()
    return jsonify(error.to_dict()), error.status_code


@admin_bp.errorhandler(HTTPException)
def admin_http_error(error):
    return jsonify({'error': error.description}), error.code


@admin_bp.errorhandler(Exception)
def admin_internal_error(error):
    db.session.rollback()
    current_app.logger.error(f'Admin API error on {request.method} {request.path}: {error}')
    return jsonify({'error': 'Internal server error'}), 500
