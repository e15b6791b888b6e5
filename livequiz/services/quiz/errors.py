class QuizError(Exception):
    """Base class for session errors surfaced to the host or a participant."""
    status_code = 400

    def __init__(self, message, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self):
        payload = {'error': self.message}
        payload.update(self.extra)
        return payload


class InvalidTransition(QuizError):
    status_code = 409


class UnknownQuestion(QuizError):
    status_code = 404


class ConfirmationRequired(QuizError):
    status_code = 400


class InvalidDisplayName(QuizError):
    status_code = 400


class BatchFlushError(QuizError):
    """The pending answers could not be committed; the buffer is kept."""
    status_code = 503
