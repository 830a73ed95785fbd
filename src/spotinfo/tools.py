"""Tool facade for the MCP server.

Tool arguments arrive as an untyped JSON object. They are coerced leniently
(numbers given as strings, a single region given as a string, missing or
null values) into a ``Query`` for the engine, and the engine's rows are
shaped into the JSON documents the tools return.
"""

import time
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from spotinfo.engine import AdviceEngine
from spotinfo.errors import ErrorKind, SpotinfoError, as_spotinfo_error
from spotinfo.filters import within_interruption_rate
from spotinfo.models import ALL_REGIONS, Advice, Query, SortBy
from spotinfo.observability import get_observability_manager

DEFAULT_LIMIT = 10
MAX_LIMIT = 50
MAX_SCORE = 10
MIN_SCORE_TIMEOUT = 1
MAX_SCORE_TIMEOUT = 300
MAX_RELIABILITY = 100

# Tool sort names -> (engine sort key, descending)
SORT_OPTIONS: dict[str, tuple[SortBy, bool]] = {
    "reliability": (SortBy.RANGE, False),
    "price": (SortBy.PRICE, False),
    "savings": (SortBy.SAVINGS, True),
    "score": (SortBy.SCORE, False),
}


class ToolError(Exception):
    """Raised when a tool call fails; the message is returned to the client."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.INTERNAL) -> None:
        super().__init__(message)
        self.kind = kind


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _to_int(value: Any) -> int:
    return int(_to_float(value))


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _to_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, list | tuple | set):
        return [str(item).strip() for item in value if str(item).strip()]
    return [str(value)]


class FindSpotInstancesParams(BaseModel):
    """Arguments of ``find_spot_instances`` after coercion.

    Attributes:
        regions: Regions to search (``["all"]`` when empty)
        instance_types: Instance type regular expression
        min_vcpu: Minimum vCPUs
        min_memory_gb: Minimum memory in GB
        max_price_per_hour: Maximum spot price (0 = no cap)
        max_interruption_rate: Maximum average interruption rate (0 = no cap)
        sort_by: reliability, price, savings or score
        limit: Number of rows returned (1..50)
        with_score: Enrich with placement scores
        min_score: Minimum placement score (0..10)
        az: AZ-level scores instead of region-level
        score_timeout: Score enrichment deadline in seconds (1..300)
    """

    model_config = ConfigDict(extra="ignore")

    regions: list[str] = [ALL_REGIONS]
    instance_types: str = ""
    min_vcpu: int = 0
    min_memory_gb: int = 0
    max_price_per_hour: float = 0.0
    max_interruption_rate: float = 0.0
    sort_by: str = "reliability"
    limit: int = DEFAULT_LIMIT
    with_score: bool = False
    min_score: int = 0
    az: bool = False
    score_timeout: float | None = None

    @field_validator("regions", mode="before")
    @classmethod
    def coerce_regions(cls, v: Any) -> list[str]:
        regions = _to_str_list(v)
        if not regions or ALL_REGIONS in regions:
            return [ALL_REGIONS]
        return regions

    @field_validator("instance_types", "sort_by", mode="before")
    @classmethod
    def coerce_str(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @field_validator("sort_by")
    @classmethod
    def default_sort(cls, v: str) -> str:
        return v.lower() or "reliability"

    @field_validator("min_vcpu", "min_memory_gb", mode="before")
    @classmethod
    def coerce_count(cls, v: Any) -> int:
        return max(0, _to_int(v))

    @field_validator("max_price_per_hour", "max_interruption_rate", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> float:
        return max(0.0, _to_float(v))

    @field_validator("limit", mode="before")
    @classmethod
    def coerce_limit(cls, v: Any) -> int:
        limit = _to_int(v)
        if limit <= 0:
            return DEFAULT_LIMIT
        return min(limit, MAX_LIMIT)

    @field_validator("with_score", "az", mode="before")
    @classmethod
    def coerce_flag(cls, v: Any) -> bool:
        return _to_bool(v)

    @field_validator("min_score", mode="before")
    @classmethod
    def coerce_min_score(cls, v: Any) -> int:
        return min(max(0, _to_int(v)), MAX_SCORE)

    @field_validator("score_timeout", mode="before")
    @classmethod
    def coerce_score_timeout(cls, v: Any) -> float | None:
        if v is None or v == "":
            return None
        timeout = _to_float(v)
        if timeout <= 0:
            return None
        return min(max(timeout, MIN_SCORE_TIMEOUT), MAX_SCORE_TIMEOUT)

    def to_query(self) -> Query:
        sort_by, sort_desc = SORT_OPTIONS.get(self.sort_by, SORT_OPTIONS["reliability"])
        return Query(
            regions=self.regions,
            pattern=self.instance_types,
            min_cpu=self.min_vcpu,
            min_ram_gb=self.min_memory_gb,
            max_price=self.max_price_per_hour,
            sort_by=sort_by,
            sort_desc=sort_desc,
            with_scores=self.with_score,
            per_az=self.az,
            min_score=self.min_score,
            score_timeout=self.score_timeout,
        )


def reliability_score(average_interruption: float) -> int:
    return int(max(0.0, MAX_RELIABILITY - average_interruption))


def advice_to_result(advice: Advice) -> dict[str, Any]:
    """Shape one advice row as a ``find_spot_instances`` result."""
    average = advice.average_interruption
    result: dict[str, Any] = {
        "instance_type": advice.instance,
        "region": advice.region,
        "spot_price_per_hour": advice.price,
        "spot_price": f"${advice.price:.4f}/hour",
        "savings_percentage": advice.savings,
        "savings": f"{advice.savings}% cheaper than on-demand",
        "interruption_rate": average,
        "interruption_frequency": advice.band.label,
        "interruption_range": f"{advice.band.min}-{advice.band.max}%",
        "vcpu": advice.info.cores,
        "memory_gb": advice.info.ram_gb,
        "specs": f"{advice.info.cores} vCPU, {advice.info.ram_gb:.0f} GB RAM",
        "reliability_score": reliability_score(average),
    }
    if advice.region_score is not None:
        result["region_score"] = advice.region_score
    if advice.zone_scores:
        result["zone_scores"] = dict(advice.zone_scores)
    if advice.score_fetched_at is not None:
        result["score_fetched_at"] = advice.score_fetched_at.isoformat()
    return result


async def find_spot_instances(
    engine: AdviceEngine, arguments: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Search spot instance options.

    Args:
        engine: Shared advice engine
        arguments: Raw tool arguments

    Returns:
        ``{"results": [...], "metadata": {...}}``

    Raises:
        ToolError: If the engine rejects the query or fails
    """
    logger = get_observability_manager(engine.config.observability).get_logger(__name__)
    started = time.monotonic()
    params = FindSpotInstancesParams.model_validate(arguments or {})
    logger.debug("Handling find_spot_instances", arguments=params.model_dump())

    try:
        advices = await engine.get_spot_savings(params.to_query())
        data_source = await engine.data_source()
    except SpotinfoError as e:
        logger.warning("find_spot_instances failed", error_kind=e.kind.value, error_message=str(e))
        raise ToolError(f"Failed to get spot recommendations: {e}", e.kind) from e
    except Exception as e:
        internal = as_spotinfo_error(e)
        logger.error("find_spot_instances failed", error=e, error_kind=internal.kind.value)
        message = f"Failed to get spot recommendations: {internal}"
        raise ToolError(message, internal.kind) from internal

    advices = [a for a in advices if within_interruption_rate(a, params.max_interruption_rate)]
    advices = advices[: params.limit]
    results = [advice_to_result(a) for a in advices]
    query_time_ms = int((time.monotonic() - started) * 1000)

    logger.debug("find_spot_instances completed", results=len(results), query_time_ms=query_time_ms)
    return {
        "results": results,
        "metadata": {
            "total_results": len(results),
            "regions_searched": sorted({a.region for a in advices}),
            "query_time_ms": query_time_ms,
            "data_source": data_source,
            "data_freshness": "embedded" if data_source == "embedded" else "current",
        },
    }


async def list_spot_regions(
    engine: AdviceEngine, arguments: dict[str, Any] | None = None
) -> dict[str, Any]:
    """List regions with spot advice.

    ``arguments`` may carry ``include_names``; it is accepted for client
    compatibility and does not change the response.

    Returns:
        ``{"regions": [...], "total": N}``

    Raises:
        ToolError: If the advisor data cannot be loaded
    """
    logger = get_observability_manager(engine.config.observability).get_logger(__name__)
    logger.debug("Handling list_spot_regions", arguments=arguments or {})

    try:
        advices = await engine.get_spot_savings(Query(sort_by=SortBy.REGION))
    except SpotinfoError as e:
        logger.warning("list_spot_regions failed", error_kind=e.kind.value, error_message=str(e))
        raise ToolError(f"Failed to retrieve regions: {e}", e.kind) from e
    except Exception as e:
        internal = as_spotinfo_error(e)
        logger.error("list_spot_regions failed", error=e, error_kind=internal.kind.value)
        raise ToolError(f"Failed to retrieve regions: {internal}", internal.kind) from internal

    regions = sorted({a.region for a in advices})
    logger.debug("list_spot_regions completed", total=len(regions))
    return {"regions": regions, "total": len(regions)}


__all__ = [
    "DEFAULT_LIMIT",
    "MAX_LIMIT",
    "FindSpotInstancesParams",
    "ToolError",
    "advice_to_result",
    "find_spot_instances",
    "list_spot_regions",
    "reliability_score",
]
