"""Domain errors shared by the store, the collections and the HTTP layer."""


class ScanFormError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ScanFormError):
    status_code = 400


class NotFound(ScanFormError):
    status_code = 404


class Conflict(ScanFormError):
    status_code = 409


class StorageError(ScanFormError):
    status_code = 503
