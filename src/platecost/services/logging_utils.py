"""Service layer logging utilities.

Provides structured logging for ledger and costing operations so every
state-changing call leaves a consistent record.

Usage:
    from platecost.services.logging_utils import get_service_logger, log_operation

    logger = get_service_logger(__name__)

    log_operation(
        logger,
        operation="apply_waste",
        outcome="insufficient_inventory",
        level=logging.WARNING,
        inventory_item_id=item_id,
        location_id=location_id,
    )
"""

import logging
from typing import Any


def get_service_logger(name: str) -> logging.Logger:
    """
    Get a logger configured for service operations.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Logger instance under the 'platecost.services' prefix.

    Example:
        >>> logger = get_service_logger(__name__)
        >>> logger.name
        'platecost.services.ledger_service'
    """
    if "." in name:
        name = name.split(".")[-1]
    return logging.getLogger(f"platecost.services.{name}")


def log_operation(
    logger: logging.Logger,
    operation: str,
    outcome: str,
    level: int = logging.INFO,
    **context: Any,
) -> None:
    """
    Log a service operation with structured context.

    The context is passed via the 'extra' parameter so handlers that
    understand structured records can index on it.

    Args:
        logger: Logger instance to use
        operation: Operation name (e.g., "apply_receipt", "resolve_recipe_cost")
        outcome: Outcome description (e.g., "success", "insufficient_inventory", "cycle_detected")
        level: Log level (default: INFO). Use DEBUG for frequent read-path logs.
        **context: Additional context fields (entity IDs, quantities, error details)
    """
    extra = {
        "operation": operation,
        "outcome": outcome,
        **context,
    }
    logger.log(level, f"{operation}: {outcome}", extra=extra)
