import math
from typing import Optional

# (lower bound inclusive, label), highest band first
GRADE_BANDS = (
    (97.5, "1.00"),
    (94.5, "1.25"),
    (91.5, "1.50"),
    (86.5, "1.75"),
    (81.5, "2.00"),
    (76.0, "2.25"),
    (70.5, "2.50"),
    (65.0, "2.75"),
    (59.5, "3.00"),
)
FAILING_GRADE = "5.00"
LOWEST_PASSING_VALUE = 3.0


def band(percentage: Optional[float]) -> str:
    """Map a weighted percentage to its numeric grade label."""
    if percentage is None or math.isnan(percentage):
        return FAILING_GRADE
    for lower_bound, label in GRADE_BANDS:
        if percentage >= lower_bound:
            return label
    return FAILING_GRADE


def numeric_value(label: Optional[str]) -> float:
    try:
        return float(label)
    except (TypeError, ValueError):
        return 0.0


def remarks(label: Optional[str]) -> str:
    """PASSED for 1.00 through 3.00, FAILED otherwise."""
    value = numeric_value(label)
    if 0 < value <= LOWEST_PASSING_VALUE:
        return "PASSED"
    return "FAILED"
