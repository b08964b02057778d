"""
API Routes Blueprint
REST API endpoints for playback devices: pairing, schedule, emergency polling,
heartbeat and play logs
"""
import time
import logging
from functools import wraps
from flask import Blueprint, request, jsonify, current_app

from models import db, utcnow, isoformat_utc, Device
from utils.errors import CareVoiceError, NotFoundError, ValidationError
from utils.device_session import redeem_pairing_code, record_heartbeat, parse_device_id
from utils.emergency import get_active_broadcast
from utils.play_log import upsert_play_log, parse_status, parse_timestamp
from utils.schedule_utils import get_device_schedule

api_bp = Blueprint('api', __name__)

# Setup API logger
api_logger = logging.getLogger('api')


# ============================================================================
# AUTHENTICATION DECORATOR
# ============================================================================

def _request_device_id():
    if request.method == 'GET':
        return request.args.get('deviceId')
    data = request.get_json(silent=True) or {}
    return data.get('deviceId')


def require_device_key(f):
    """
    Decorator to authenticate a paired device

    The device id comes from the query string (GET) or JSON body (POST); the
    key from the X-Device-Key header. An unknown device is a 404 before the
    key is looked at.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            device_id = parse_device_id(_request_device_id())
        except ValidationError as e:
            log_api_request(None, request.path, request.method, 400)
            return jsonify(e.to_dict()), 400

        device = db.session.get(Device, device_id)
        if device is None:
            log_api_request(device_id, request.path, request.method, 404)
            return jsonify({'error': 'Device not found'}), 404

        if not device.verify_api_key(request.headers.get('X-Device-Key')):
            current_app.logger.warning(f'Invalid device key for device {device_id} from {request.remote_addr}')
            log_api_request(device_id, request.path, request.method, 401)
            return jsonify({'error': 'Invalid API key'}), 401

        # Store device in request context
        request.device = device  # type: ignore

        return f(*args, **kwargs)

    return decorated_function


def log_api_request(device_id, endpoint, method, status_code, response_time=None):
    """Log API request to the api log file"""
    timing = f' {response_time:.1f}ms' if response_time is not None else ''
    api_logger.info(f'{method} {endpoint} - Device:{device_id} IP:{request.remote_addr} '
                    f'Status:{status_code}{timing}')


def _elapsed_ms(start_time):
    return (time.time() - start_time) * 1000


# ============================================================================
# PAIRING
# ============================================================================

@api_bp.route('/pair', methods=['POST'])
def pair_device():
    """
    Redeem a pairing code shown on the dashboard

    Request JSON:
    {
        "pairingCode": "042917"
    }

    Response JSON:
    {
        "deviceId": 7,
        "deviceName": "Lobby TV",
        "apiKey": "generated-key-here",
        "room": {"id": 2, "name": "Lobby"},
        "organization": {"id": 1, "name": "Sunrise Care", "timezone": "America/New_York"}
    }
    """
    start_time = time.time()

    try:
        data = request.get_json(silent=True) or {}
        device, api_key = redeem_pairing_code(data.get('pairingCode'))

        log_api_request(device.id, '/pair', 'POST', 200, _elapsed_ms(start_time))

        return jsonify({
            'deviceId': device.id,
            'deviceName': device.name,
            'apiKey': api_key,
            'room': device.room.to_summary() if device.room else None,
            'organization': device.organization.to_summary()
        }), 200

    except CareVoiceError as e:
        log_api_request(None, '/pair', 'POST', e.status_code)
        return jsonify(e.to_dict()), e.status_code

    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f'Error pairing device: {e}')
        return jsonify({'error': 'Internal server error'}), 500


# ============================================================================
# SCHEDULE
# ============================================================================

@api_bp.route('/player/schedule', methods=['GET'])
@require_device_key
def player_schedule():
    """
    Today's resolved schedule for the device's room, in the org timezone

    Items are ordered by (timeOfDay, order). The payload's "date" is the
    org-local date it applies to.
    """
    start_time = time.time()

    try:
        device = request.device  # type: ignore
        payload = get_device_schedule(device)

        log_api_request(device.id, '/player/schedule', 'GET', 200, _elapsed_ms(start_time))

        response = jsonify(payload)
        response.headers['Cache-Control'] = f"public, max-age={current_app.config['SCHEDULE_CACHE_MAX_AGE']}"
        return response, 200

    except CareVoiceError as e:
        return jsonify(e.to_dict()), e.status_code

    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f'Error resolving schedule: {e}')
        return jsonify({'error': 'Internal server error'}), 500


# ============================================================================
# EMERGENCY
# ============================================================================

@api_bp.route('/player/emergency', methods=['GET'])
@require_device_key
def player_emergency():
    """
    Currently active emergency broadcast for the device's organization

    Response JSON:
    {"active": false}
    or
    {"active": true, "id": 3, "announcement": {...}, "expiresAt": null, "createdAt": "..."}
    """
    try:
        device = request.device  # type: ignore
        broadcast = get_active_broadcast(device.organization_id)

        if broadcast is None:
            payload = {'active': False}
        else:
            payload = {
                'active': True,
                'id': broadcast.id,
                'announcement': broadcast.announcement.to_dict(),
                'expiresAt': isoformat_utc(broadcast.expires_at),
                'createdAt': isoformat_utc(broadcast.created_at)
            }

        log_api_request(device.id, '/player/emergency', 'GET', 200)

        response = jsonify(payload)
        response.headers['Cache-Control'] = 'no-cache, no-store, must-revalidate'
        return response, 200

    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f'Error checking emergency broadcast: {e}')
        return jsonify({'error': 'Internal server error'}), 500


# ============================================================================
# HEARTBEAT
# ============================================================================

@api_bp.route('/player/heartbeat', methods=['POST'])
@require_device_key
def player_heartbeat():
    """
    Record device liveness

    Request JSON:
    {
        "deviceId": 7
    }

    Response JSON:
    {
        "success": true,
        "lastSeenAt": "2025-10-31T10:00:05.000Z"
    }
    """
    try:
        device = record_heartbeat(request.device.id)  # type: ignore

        log_api_request(device.id, '/player/heartbeat', 'POST', 200)

        return jsonify({
            'success': True,
            'lastSeenAt': isoformat_utc(device.last_seen_at)
        }), 200

    except NotFoundError as e:
        return jsonify(e.to_dict()), 404

    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f'Error processing heartbeat: {e}')
        return jsonify({'error': 'Internal server error'}), 500


# ============================================================================
# PLAY LOG
# ============================================================================

@api_bp.route('/player/log', methods=['POST'])
@require_device_key
def player_log():
    """
    Report the outcome of a playback

    Request JSON:
    {
        "deviceId": 7,
        "announcementId": 12,
        "scheduledAt": "2025-10-31T13:00:00.000Z",
        "status": "PLAYED"
    }

    Response JSON:
    {
        "success": true,
        "created": true
    }
    """
    try:
        device = request.device  # type: ignore
        data = request.get_json(silent=True) or {}

        announcement_id = data.get('announcementId')
        if isinstance(announcement_id, bool) or not isinstance(announcement_id, int):
            raise ValidationError('announcementId required')

        log, created = upsert_play_log(
            device,
            announcement_id,
            parse_timestamp(data.get('scheduledAt')),
            parse_status(data.get('status')),
            now=utcnow()
        )

        log_api_request(device.id, '/player/log', 'POST', 200)

        return jsonify({
            'success': True,
            'created' if created else 'updated': True,
            'id': log.id
        }), 200

    except CareVoiceError as e:
        return jsonify(e.to_dict()), e.status_code

    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f'Error recording play log: {e}')
        return jsonify({'error': 'Internal server error'}), 500


# ============================================================================
# HEALTH CHECK
# ============================================================================

@api_bp.route('/health', methods=['GET'])
def health_check():
    """
    Simple health check endpoint (no authentication required)

    Response JSON:
    {
        "status": "healthy",
        "timestamp": "2025-10-31T10:00:00.000Z"
    }
    """
    return jsonify({
        'status': 'healthy',
        'timestamp': isoformat_utc(utcnow())
    }), 200


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@api_bp.errorhandler(CareVoiceError)
def api_carevoice_error(error):
    return jsonify(error.to_dict()), error.status_code


@api_bp.errorhandler(404)
def api_not_found(error):
    return jsonify({'error': 'Endpoint not found'}), 404


@api_bp.errorhandler(500)
def api_internal_error(error):
    db.session.rollback()
    return jsonify({'error': 'Internal server error'}), 500


# Setup API logger file handler
def setup_api_logger(app):
    """Setup API-specific file logger"""
    if app.testing:
        return
    handler = logging.FileHandler(app.config['API_LOG_FILE'])
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s'
    ))
    api_logger.addHandler(handler)
    api_logger.setLevel(logging.INFO)
