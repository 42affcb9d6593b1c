"""
Error Taxonomy Module

Domain modules raise these; the service facade turns them into failed
response envelopes. Authentication and authorization messages are
generic; validation messages name the offending field.
"""


class LedgerError(Exception):
    """Base class for all ledger errors"""

    default_message = "Operation failed."

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class DuplicateIdentity(LedgerError):
    default_message = "Identity handle already provisioned in this cluster."


class AuthenticationFailed(LedgerError):
    default_message = "Access denied. Invalid credentials or cluster id."


class Unauthorized(LedgerError):
    default_message = "Access denied. Operation not permitted."


class NotFound(LedgerError):
    default_message = "Record not found."


class InvalidTransition(LedgerError):
    default_message = "Request has already been resolved."


class ValidationError(LedgerError):
    default_message = "Invalid input."


class StorageUnavailable(LedgerError):
    """Underlying medium is unreadable; readers degrade to empty collections"""
    default_message = "Storage medium unavailable."
