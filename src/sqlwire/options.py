"""
Database options captured once at construction time
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

LOGGER_NAME = "sqlwire"


def _default_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


@dataclass(frozen=True)
class DatabaseOptions:
    """
    Ambient configuration shared by every session created by a database

    Attributes:
        logger: Parent logger; each component logs through a child named
            after it (``<logger>.Session``, ``<logger>.Transaction``, ...)
        isolation_level: Default isolation level for new transactions, or
            None to keep the driver's default
    """

    logger: logging.Logger = field(default_factory=_default_logger)
    isolation_level: Optional[str] = None

    def logger_for(self, component: str) -> logging.Logger:
        """Get the logger used by the given component"""
        return self.logger.getChild(component)


__all__ = ['DatabaseOptions', 'LOGGER_NAME']
