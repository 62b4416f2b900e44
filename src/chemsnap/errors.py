"""Application error taxonomy.

Every error carries a machine ``code`` (also used as the ``reason`` of a
denied access decision), an HTTP ``status_code`` for the API layer and a
user-facing ``message``.
"""


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code


class IdentityUnavailable(AppError):
    code = "identity_unavailable"
    status_code = 401


class ProfileLoadFailed(AppError):
    code = "profile_load_failed"
    status_code = 401


class BlockedAccount(AppError):
    code = "blocked_account"
    status_code = 403


class AccessDenied(AppError):
    code = "access_denied"
    status_code = 403


class SelfActionRejected(AppError):
    code = "self_action_rejected"
    status_code = 403


class PersistenceFailed(AppError):
    code = "persistence_failed"
    status_code = 503


class DataStoreError(AppError):
    code = "data_store_error"
    status_code = 503


class RecordNotFound(DataStoreError):
    code = "not_found"
    status_code = 404


class ConflictError(DataStoreError):
    code = "conflict"
    status_code = 409
