class QuizPlatformError(RuntimeError):
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class Unauthorized(QuizPlatformError):
    status_code = 401


class Forbidden(QuizPlatformError):
    status_code = 403


class NotFound(QuizPlatformError):
    status_code = 404


class InvalidState(QuizPlatformError):
    """Operation is not legal for the attempt's current state."""

    status_code = 409


class RetryNotAllowed(QuizPlatformError):
    status_code = 400


class MaxAttemptsReached(QuizPlatformError):
    status_code = 400


class ValidationError(QuizPlatformError):
    """Answer payload does not have the shape its question type expects."""

    status_code = 422
