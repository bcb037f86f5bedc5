from __future__ import annotations

from typing import Optional, Tuple

ALL_CALCULATORS = "all"

# Trade calculators a widget key can be bound to.
CALCULATOR_TYPES: Tuple[str, ...] = (
    "roofing",
    "concrete",
    "hvac",
    "plumbing",
    "electrical",
    "painting",
    "landscaping",
    "flooring",
    "siding",
    "windows",
    "doors",
    "gutters",
    "fencing",
    "decking",
    "driveway",
    "foundation",
    "insulation",
    "solar",
    "pool",
    "remodeling",
)

ISSUABLE_CALCULATOR_TYPES: Tuple[str, ...] = CALCULATOR_TYPES + (ALL_CALCULATORS,)


def is_issuable(calculator_type: Optional[str]) -> bool:
    return calculator_type in ISSUABLE_CALCULATOR_TYPES


def authorizes(bound_type: str, requested_type: str) -> bool:
    """Whether a key bound to ``bound_type`` may render ``requested_type``."""
    return bound_type == ALL_CALCULATORS or bound_type == requested_type
