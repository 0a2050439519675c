"""
Request Validation
==================
Shape checks for raw order requests, run before the assembler.

Only structure is checked here (types, required fields, formats). Whether
the referenced items and extras exist or are available is the engine's
business.
"""

import logging
from datetime import datetime
from typing import Any, Mapping, Optional, Tuple

from assembler import LineRequest, SelectionRequest
from extras import (
    ITEM_SELECTION_KEYS,
    NESTED_SELECTION_KEYS,
    ExtraSelection,
    selection_children,
)


logger = logging.getLogger(__name__)


MAX_SPECIAL_INSTRUCTIONS_LENGTH = 500
MAX_SELECTION_NESTING = 32  # Far above any real menu; rejects hostile input


def _is_identifier(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def _parse_iso_datetime(value: str) -> Optional[datetime]:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


# ============================================================================
# SELECTION TREE
# ============================================================================

def _check_selections(selections: Any, path: str, depth: int = 0) -> Optional[str]:
    """
    Check a list of selection nodes (recursive).

    A node is {"extra_id": str, "extras": [node, ...]} or a bare id string.

    Returns:
        Error message or None
    """
    if not isinstance(selections, list):
        return f"{path} must be an array"

    if depth > MAX_SELECTION_NESTING:
        return f"{path} is nested too deeply"

    for j, node in enumerate(selections):
        node_path = f"{path}[{j}]"

        if isinstance(node, str):
            if not _is_identifier(node):
                return f"{node_path} must be a non-empty string"
            continue

        if not isinstance(node, Mapping):
            return f"{node_path} must be an object or an extra id string"

        if not _is_identifier(node.get("extra_id")):
            return f"{node_path}.extra_id is required and must be a string"

        error = _check_children(node, NESTED_SELECTION_KEYS, node_path, depth + 1)
        if error:
            return error

    return None


def _check_children(
    node: Mapping,
    keys: Tuple[str, ...],
    path: str,
    depth: int = 0
) -> Optional[str]:
    """Check the selections under a line or node, whichever alias key holds them."""
    filled = [key for key in keys if node.get(key) is not None and node.get(key) != []]
    if len(filled) > 1:
        return f"{path} must use only one of {', '.join(filled)}"

    key = filled[0] if filled else keys[0]
    return _check_selections(selection_children(node, keys), f"{path}.{key}", depth)


# ============================================================================
# ORDER REQUEST
# ============================================================================

def validate_order_request(
    body: Any
) -> Tuple[Optional[SelectionRequest], Optional[str]]:
    """
    Validate raw order request and build a SelectionRequest.

    Returns:
        (request, None) when valid, (None, error_message) otherwise
    """
    error = _find_request_error(body)

    if error:
        logger.info(f"Order request rejected: {error}")
        return None, error

    pickup = body.get("pickup_time_requested")

    request = SelectionRequest(
        restaurant_id=body["restaurant_id"].strip(),
        items=tuple(
            LineRequest(
                item_id=item["item_id"].strip(),
                quantity=item["quantity"],
                selected_extras=tuple(
                    ExtraSelection.from_dict(node)
                    for node in selection_children(item, ITEM_SELECTION_KEYS)
                )
            )
            for item in body["items"]
        ),
        pickup_time_requested=_parse_iso_datetime(pickup) if pickup else None,
        special_instructions=body.get("special_instructions")
    )

    return request, None


def _find_request_error(body: Any) -> Optional[str]:
    if not isinstance(body, Mapping):
        return "Request body must be an object"

    if not _is_identifier(body.get("restaurant_id")):
        return "restaurant_id is required and must be a string"

    items = body.get("items")
    if not isinstance(items, list):
        return "items must be an array"
    if len(items) == 0:
        return "items array cannot be empty"

    for i, item in enumerate(items):
        if not isinstance(item, Mapping):
            return f"items[{i}] must be an object"

        if not _is_identifier(item.get("item_id")):
            return f"items[{i}].item_id is required and must be a string"

        quantity = item.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            return f"items[{i}].quantity is required and must be an integer"
        if quantity < 1:
            return f"items[{i}].quantity must be a positive integer"

        error = _check_children(item, ITEM_SELECTION_KEYS, f"items[{i}]")
        if error:
            return error

    pickup = body.get("pickup_time_requested")
    if pickup is not None:
        if not isinstance(pickup, str):
            return "pickup_time_requested must be a string (ISO date format)"
        if _parse_iso_datetime(pickup) is None:
            return "pickup_time_requested must be a valid ISO date string"

    instructions = body.get("special_instructions")
    if instructions is not None:
        if not isinstance(instructions, str):
            return "special_instructions must be a string"
        if len(instructions) > MAX_SPECIAL_INSTRUCTIONS_LENGTH:
            return (
                f"special_instructions must be "
                f"{MAX_SPECIAL_INSTRUCTIONS_LENGTH} characters or less"
            )

    return None

