"""
Permission Decorators and Audit Logging Utilities
Role and subscription checks for the admin API plus the audit trail writer
"""
from functools import wraps
from flask import jsonify, request, has_request_context, current_app
from flask_login import current_user
from models import db, AuditLog


def manager_required(f):
    """
    Decorator to restrict route access to Owner and Admin users
    Usage: @manager_required
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({'error': 'Authentication required'}), 401

        if not current_user.can_manage:
            return jsonify({'error': 'Owner or Admin access required'}), 403

        return f(*args, **kwargs)
    return decorated_function


def subscription_required(f):
    """
    Decorator for mutating routes: the organization must be trialing or paid up
    Usage: @subscription_required
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({'error': 'Authentication required'}), 401

        if not current_user.organization.has_active_subscription:
            return jsonify({'error': 'Subscription inactive'}), 403

        return f(*args, **kwargs)
    return decorated_function


# ============================================================================
# AUDIT LOGGING
# ============================================================================

def record_audit(organization_id, action, entity_type, entity_id=None,
                 old_value=None, new_value=None, user=None):
    """
    Add an audit entry to the current session

    The entry is committed together with the mutation it describes, so a
    rolled-back mutation leaves no audit trail behind.

    Args:
        organization_id (int): Tenant the mutation belongs to
        action (str): Dotted action name (e.g. 'emergency.create', 'device.delete')
        entity_type (str): 'emergency', 'device', 'schedule', ...
        entity_id (int): ID of the affected entity
        old_value (dict): Snapshot before the mutation
        new_value (dict): Snapshot after the mutation
        user (User): Acting user; defaults to the logged-in user

    Example:
        record_audit(org.id, 'device.delete', 'device', device.id, old_value=device.to_dict())
    """
    if user is None and has_request_context() and current_user.is_authenticated:
        user = current_user

    entry = AuditLog(
        organization_id=organization_id,
        user_id=user.id if user is not None else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        old_value=old_value,
        new_value=new_value,
        ip_address=request.remote_addr if has_request_context() else None
    )
    db.session.add(entry)
    current_app.logger.info(f"Audit {action} {entity_type}:{entity_id} org={organization_id}")
    return entry


def get_recent_audit(organization_id, limit=50):
    """
    Get recent audit entries for an organization

    Returns:
        List of AuditLog objects, newest first
    """
    return AuditLog.query.filter_by(organization_id=organization_id)\
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()
