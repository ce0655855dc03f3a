"""Exceptions shared by the HTTP routes and the connection gateway."""


class QuizRoomError(Exception):
    """Base class for errors reported back to a single caller."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(QuizRoomError):
    """Raised when a room code does not resolve to a room."""

    status_code = 404


class InvalidInput(QuizRoomError):
    """Raised when a creation payload or client message is malformed."""

    status_code = 400


class GenerationError(QuizRoomError):
    """Raised when the question generation service cannot produce a quiz."""

    status_code = 502
