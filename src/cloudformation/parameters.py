"""
Parameter diffing for stack updates.
"""

import logging
from typing import Dict, Iterable, List

from .models import Parameter

logger = logging.getLogger(__name__)


def compute_update_parameters(
    existing: Iterable[Parameter], requested: Dict[str, str]
) -> List[Parameter]:
    """
    Build the UpdateStack parameter list.

    Every stored parameter appears once: with the requested value when it
    changed, otherwise flagged to reuse the previous value. Requested keys
    the stack does not know yet are appended with explicit values.

    Args:
        existing: Parameters currently stored on the stack
        requested: Desired parameter values

    Returns:
        Ordered parameter list, stored keys first
    """
    result: List[Parameter] = []
    seen = set()

    for param in existing:
        if param.key in seen:
            continue
        seen.add(param.key)

        if param.key in requested and requested[param.key] != param.value:
            logger.info(
                f"Updating template parameter '{param.key}' from "
                f"'{param.value}' to '{requested[param.key]}'"
            )
            result.append(Parameter(param.key, requested[param.key]))
        else:
            result.append(Parameter(param.key, use_previous_value=True))

    for key, value in requested.items():
        if key not in seen:
            logger.info(f"Adding new template parameter {key}='{value}'")
            result.append(Parameter(key, value))
            seen.add(key)

    return result
