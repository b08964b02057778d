"""
CareVoice error taxonomy
Typed failures raised by service functions and mapped to JSON responses by the blueprints
"""


class CareVoiceError(Exception):
    """Base class for expected, user-facing failures"""
    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'error': self.message}


class ValidationError(CareVoiceError):
    """Malformed input"""
    status_code = 400


class NotFoundError(CareVoiceError):
    """Entity, device, schedule or pairing code is absent"""
    status_code = 404


class ConflictError(CareVoiceError):
    """Operation would violate the current state (e.g. re-pairing a PAIRED device)"""
    status_code = 409


class ExpiredError(CareVoiceError):
    """Pairing code existed but its validity window has passed"""
    status_code = 410
