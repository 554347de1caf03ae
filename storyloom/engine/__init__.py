"""
Core engine components for the Storyloom story service
"""

from .errors import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    StoryloomError,
    StoryValidationError,
)
from .graph_validator import summarize_violations, validate_nodes, validate_structure
from .state_machine import StoryState, StoryStateMachine

__all__ = [
    "StoryloomError",
    "NotFoundError",
    "StoryValidationError",
    "ConflictError",
    "PersistenceError",
    "validate_structure",
    "validate_nodes",
    "summarize_violations",
    "StoryState",
    "StoryStateMachine",
]
