class ProcessingError(Exception):
    """Base class for every error that aborts an invocation of the program."""

    code = "ProcessingError"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class InvalidRequest(ProcessingError):
    code = "InvalidRequest"


class MalformedRecord(ProcessingError):
    code = "MalformedRecord"


class AuthorizationError(ProcessingError):
    code = "AuthorizationError"


class MissingSignature(AuthorizationError):
    code = "MissingSignature"


class NotAuthorized(AuthorizationError):
    code = "NotAuthorized"


class CapacityExceeded(ProcessingError):
    code = "CapacityExceeded"


class MissingSlot(ProcessingError):
    code = "MissingSlot"
