"""Row predicates used by the advice engine and the tool facade."""

import re

from spotinfo.errors import InvalidPatternError
from spotinfo.models import Advice, TypeInfo


def compile_pattern(pattern: str) -> re.Pattern[str] | None:
    """Compile an instance type pattern; an empty pattern matches everything.

    Raises:
        InvalidPatternError: If the pattern is not a valid regular expression
    """
    if not pattern:
        return None
    try:
        return re.compile(pattern)
    except re.error as e:
        raise InvalidPatternError(f"failed to match instance type {pattern!r}: {e}") from e


def matches_pattern(instance: str, pattern: re.Pattern[str] | None) -> bool:
    """Unanchored match, so ``m5`` also selects ``m5.large`` and ``m5a.large``."""
    return pattern is None or pattern.search(instance) is not None


def meets_specs(info: TypeInfo, min_cpu: int, min_ram_gb: float) -> bool:
    if min_cpu > 0 and info.cores < min_cpu:
        return False
    if min_ram_gb > 0 and info.ram_gb < min_ram_gb:
        return False
    return True


def within_price(price: float, max_price: float) -> bool:
    """Check the price cap. Unknown prices (0) always pass."""
    return max_price <= 0 or price <= 0 or price <= max_price


def within_interruption_rate(advice: Advice, max_rate: float) -> bool:
    """Check the average interruption rate; a cap outside (0, 100) is ignored."""
    if max_rate <= 0 or max_rate >= 100:
        return True
    return advice.average_interruption <= max_rate


def meets_min_score(advice: Advice, min_score: int) -> bool:
    """Rows without a score fail any positive minimum."""
    if min_score <= 0:
        return True
    score = advice.best_score
    return score is not None and score >= min_score


__all__ = [
    "compile_pattern",
    "matches_pattern",
    "meets_min_score",
    "meets_specs",
    "within_interruption_rate",
    "within_price",
]
