"""
=============================================================================
ERRORS.PY — Error Taxonomy
=============================================================================
Every failure the API reports belongs to one of these types:

  validation          → bad input shape or range               (400)
  unauthorized        → missing or invalid credentials          (401)
  not_found           → missing row, or a row of another user   (404)
  conflict            → duplicate row / illegal state change    (409)
  rate_limit          → third party said "slow down"            (429)
  network             → third party unreachable or odd reply    (502)
  generation_failed   → AI output unusable, nothing was saved   (502)
  configuration       → missing external API key                (503)
  service_unavailable → third party is down                     (503)
  internal            → anything else                           (500)

Services raise these exceptions; main.py turns them into the JSON envelope
{"success": false, "error": "...", "type": "..."}.
"""

from fastapi import status


class AppError(Exception):
    """Base class. Subclasses only pin the taxonomy type and HTTP status."""

    error_type = "internal"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message, "type": self.error_type}


class ValidationFailed(AppError):
    error_type = "validation"
    status_code = status.HTTP_400_BAD_REQUEST


class Unauthorized(AppError):
    error_type = "unauthorized"
    status_code = status.HTTP_401_UNAUTHORIZED


class NotFound(AppError):
    error_type = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(AppError):
    error_type = "conflict"
    status_code = status.HTTP_409_CONFLICT


class InvalidTransition(Conflict):
    """A journal action that is not allowed from the entry's current status"""

    def __init__(self, current: str, action: str):
        super().__init__(f"Cannot {action.replace('_', ' ')} a journal entry in status '{current}'")
        self.current = current
        self.action = action


class RateLimited(AppError):
    error_type = "rate_limit"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class NetworkError(AppError):
    error_type = "network"
    status_code = status.HTTP_502_BAD_GATEWAY


class GenerationFailed(AppError):
    error_type = "generation_failed"
    status_code = status.HTTP_502_BAD_GATEWAY


class ConfigurationError(AppError):
    error_type = "configuration"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class ServiceUnavailable(AppError):
    error_type = "service_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
