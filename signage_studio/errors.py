"""Exceptions raised by the services and mapped to HTTP answers by the routes"""

from typing import Optional


class SignageError(Exception):
    pass


class ValidationError(SignageError, ValueError):
    """Bad input from the caller (400)"""


class NotFoundError(SignageError, LookupError):
    """A referenced record does not exist (404)"""

    def __init__(self, kind: str, record_id):
        super().__init__(f'{kind} {record_id} not found')
        self.kind = kind
        self.record_id = record_id


class ConfigurationError(SignageError, RuntimeError):
    pass


class StorageError(SignageError, RuntimeError):
    pass


class FalAPIError(SignageError, RuntimeError):
    """fal.ai answered with an error or with something we cannot read"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
