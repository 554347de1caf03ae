"""
Utility modules for the Storyloom story service
"""

from .logger import get_logger, setup_logging

__all__ = [
    "get_logger",
    "setup_logging",
]
