"""Exceptions raised by the attendance modules and mapped to HTTP responses in server.py."""


class AttendanceError(Exception):
    """Base error carrying the HTTP status the route layer should answer with."""
    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AttendanceError):
    status_code = 400


class PermissionDenied(AttendanceError):
    status_code = 403


class NotFoundError(AttendanceError):
    status_code = 404
