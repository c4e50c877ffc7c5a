"""Strict vs lenient handling of caller mistakes."""

import logging
from enum import Enum

from .errors import ValidationError


class Strictness(Enum):
    """How stores react to programmer errors.

    STRICT raises immediately (development, tests, CLI).
    LENIENT logs a warning and degrades to a no-op (shipped app).
    """

    STRICT = "strict"
    LENIENT = "lenient"


def reject(strictness: Strictness, log: logging.Logger, message: str) -> None:
    """Raise ValidationError in strict mode, otherwise log a warning.

    The message must carry metadata only (keys, grades), never note text.
    """
    if strictness is Strictness.STRICT:
        raise ValidationError(message)
    log.warning(message)
