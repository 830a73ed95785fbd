"""Sorting of advice rows."""

from collections.abc import Callable
from typing import Any

from spotinfo.models import Advice, SortBy

SORT_KEYS: dict[SortBy, Callable[[Advice], Any]] = {
    SortBy.RANGE: lambda a: a.band.min,
    SortBy.INSTANCE: lambda a: a.instance,
    SortBy.SAVINGS: lambda a: a.savings,
    SortBy.PRICE: lambda a: a.price,
    SortBy.REGION: lambda a: a.region,
}


def sort_advices(rows: list[Advice], sort_by: SortBy, desc: bool = False) -> list[Advice]:
    """Return ``rows`` sorted by ``sort_by``.

    All sorts are stable. ``score`` orders scored rows best first and puts
    unscored rows last; ``desc`` then inverts the scored rows only.
    """
    if sort_by is SortBy.SCORE:
        return sort_by_score(rows, desc)
    return sorted(rows, key=SORT_KEYS[sort_by], reverse=desc)


def sort_by_score(rows: list[Advice], desc: bool = False) -> list[Advice]:
    scored = [row for row in rows if row.best_score is not None]
    unscored = [row for row in rows if row.best_score is None]
    scored.sort(key=lambda a: a.best_score or 0, reverse=not desc)
    return scored + unscored


__all__ = ["SORT_KEYS", "sort_advices", "sort_by_score"]
