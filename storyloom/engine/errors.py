"""
Typed errors raised by the story engine.

Every error carries the HTTP status code the API layer reports it with, so
routers never translate them by hand.
"""

from typing import Any, List, Optional


class StoryloomError(Exception):
    """Base class for all expected engine failures"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(StoryloomError):
    """A story, node, choice or version does not exist"""

    status_code = 404


class StoryValidationError(StoryloomError):
    """The story graph failed one or more structural checks"""

    status_code = 422

    def __init__(
        self,
        message: str,
        violations: Optional[List[str]] = None,
        validation_result: Optional[Any] = None,
    ):
        super().__init__(message)
        self.violations = list(violations or [])
        self.validation_result = validation_result


class ConflictError(StoryloomError):
    """The requested transition is illegal for the story's current state"""

    status_code = 409


class PersistenceError(StoryloomError):
    """The storage layer failed and the transaction was rolled back"""

    status_code = 500
