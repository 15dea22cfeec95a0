class HandlerError(Exception):
    """Base for conditions a handler reports to its caller by name.

    The message is what clients see, so callers can match on it.
    """
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

class NotFoundError(HandlerError):
    status_code = 404

class ConflictError(HandlerError):
    status_code = 409

class AuthenticationError(HandlerError):
    status_code = 401
