"""Whole-build validation that always returns a result."""

import logging

from .models import ConfigurationResult, IncompatiblePair
from .rules import RuleEngine

logger = logging.getLogger(__name__)

VALIDATION_ERROR = "Error validating configuration"


async def validate_configuration(engine: RuleEngine, build: dict[str, str] | list[str]) -> ConfigurationResult:
    """Validate every component pair in a build. Never raises.

    Fetch failures are reported as a single incompatible entry with empty ids.
    """
    try:
        return await engine.validate_configuration(build)
    except Exception as e:
        logger.error(f"Error validating configuration: {type(e).__name__}: {e}")
        return ConfigurationResult(
            is_compatible=False,
            incompatible_components=(IncompatiblePair("", "", VALIDATION_ERROR),),
        )
