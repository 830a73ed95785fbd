"""Data models for spotinfo.

This module defines the two published AWS datasets (Spot Advisor and Spot
Pricing) in their parsed form, the per-request ``Query`` and the ``Advice``
rows handed back to callers.
"""

from datetime import UTC, datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from spotinfo.errors import InvalidOSError, RegionNotFoundError

# Band ``min`` is not published by AWS; it is derived from the band ``max``.
BAND_MIN_BY_MAX: dict[int, int] = {5: 0, 11: 6, 16: 12, 22: 17, 100: 23}

ALL_REGIONS = "all"


class InstanceOS(str, Enum):
    """Operating systems the advisor and pricing datasets are keyed by."""

    LINUX = "linux"
    WINDOWS = "windows"

    @classmethod
    def parse(cls, value: "str | InstanceOS") -> "InstanceOS":
        """Parse an OS name case-insensitively.

        Raises:
            InvalidOSError: If the value is neither linux nor windows
        """
        if isinstance(value, InstanceOS):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidOSError(
                f"invalid instance OS {value!r}, must be windows/linux"
            ) from None


class SortBy(str, Enum):
    """Sort keys for advice results."""

    RANGE = "range"
    INSTANCE = "instance"
    SAVINGS = "savings"
    PRICE = "price"
    REGION = "region"
    SCORE = "score"


class FreshnessLevel(str, Enum):
    """How old a placement score is."""

    FRESH = "fresh"
    RECENT = "recent"
    STALE = "stale"


def score_freshness(fetched_at: datetime, now: datetime | None = None) -> FreshnessLevel:
    """Classify a score fetch time: fresh under 5 minutes, recent under 30."""
    age = (now or datetime.now(UTC)) - fetched_at
    if age < timedelta(minutes=5):
        return FreshnessLevel.FRESH
    if age < timedelta(minutes=30):
        return FreshnessLevel.RECENT
    return FreshnessLevel.STALE


class InterruptionBand(BaseModel):
    """Interruption frequency band, an inclusive percentage range.

    Attributes:
        label: Human readable label as published by AWS (e.g. "<5%")
        min: Lower bound in percent (inclusive)
        max: Upper bound in percent (inclusive)
    """

    model_config = ConfigDict(frozen=True)

    label: str
    min: int = Field(..., ge=0)
    max: int = Field(..., ge=0, le=100)

    @model_validator(mode="after")
    def validate_bounds(self) -> "InterruptionBand":
        """Validate that the band is not inverted."""
        if self.min > self.max:
            raise ValueError(f"band min {self.min} exceeds max {self.max}")
        return self

    @classmethod
    def from_max(cls, label: str, max_value: int) -> "InterruptionBand":
        """Build a band from its published ``max``, deriving ``min``.

        Raises:
            ValueError: If ``max_value`` is not one of the known band limits
        """
        if max_value not in BAND_MIN_BY_MAX:
            raise ValueError(f"unknown interruption band max: {max_value}")
        return cls(label=label, min=BAND_MIN_BY_MAX[max_value], max=max_value)

    @property
    def average(self) -> float:
        """Midpoint of the band, used as the interruption rate estimate."""
        return (self.min + self.max) / 2


class TypeInfo(BaseModel):
    """Instance type details: vCPU cores, memory and EMR support."""

    model_config = ConfigDict(frozen=True)

    cores: int = Field(..., ge=1)
    ram_gb: float = Field(..., gt=0)
    emr: bool = False


class SpotAdvice(BaseModel):
    """Advisor entry for one (region, OS, instance type)."""

    model_config = ConfigDict(frozen=True)

    band_index: int
    savings: int = Field(..., ge=0, le=100)


class RegionAdvice(BaseModel):
    """Advisor entries of one region, split by operating system."""

    linux: dict[str, SpotAdvice] = Field(default_factory=dict)
    windows: dict[str, SpotAdvice] = Field(default_factory=dict)

    def for_os(self, os: InstanceOS) -> dict[str, SpotAdvice]:
        return self.windows if os is InstanceOS.WINDOWS else self.linux


class AdvisorDataset(BaseModel):
    """Parsed Spot Advisor dataset.

    Attributes:
        bands: Interruption bands, indexed by ``SpotAdvice.band_index``
        types: Instance type details keyed by instance type
        regions: Advisor entries keyed by region
        embedded: True when loaded from the embedded copy
    """

    bands: list[InterruptionBand]
    types: dict[str, TypeInfo]
    regions: dict[str, RegionAdvice]
    embedded: bool = False

    def region_names(self) -> list[str]:
        return list(self.regions)

    def region_advice(self, region: str, os: InstanceOS) -> dict[str, SpotAdvice]:
        """Return the OS-specific advice map of a region.

        Raises:
            RegionNotFoundError: If the region is not in the dataset
        """
        try:
            return self.regions[region].for_os(os)
        except KeyError:
            raise RegionNotFoundError(f"region not found: {region}") from None

    def type_info(self, instance: str) -> TypeInfo | None:
        return self.types.get(instance)

    def band(self, index: int) -> InterruptionBand | None:
        if 0 <= index < len(self.bands):
            return self.bands[index]
        return None


class InstancePrice(BaseModel):
    """Hourly spot price in USD per OS; 0 means not published."""

    linux: float = Field(default=0.0, ge=0)
    windows: float = Field(default=0.0, ge=0)

    def for_os(self, os: InstanceOS) -> float:
        return self.windows if os is InstanceOS.WINDOWS else self.linux


class PricingDataset(BaseModel):
    """Parsed Spot Pricing dataset.

    Attributes:
        regions: region -> instance type -> prices
        embedded: True when loaded from the embedded copy
    """

    regions: dict[str, dict[str, InstancePrice]]
    embedded: bool = False

    def spot_price(self, region: str, instance: str, os: InstanceOS) -> float:
        """Return the spot price, or 0 when the region or instance is unknown."""
        price = self.regions.get(region, {}).get(instance)
        return price.for_os(os) if price else 0.0


class Query(BaseModel):
    """Criteria for a single advice request.

    Attributes:
        regions: Region codes, or ``["all"]`` for every advisor region
        pattern: Regular expression matched (unanchored) against instance types
        os: Operating system name, validated by the engine
        min_cpu: Minimum vCPU count (0 disables the filter)
        min_ram_gb: Minimum memory in GiB (0 disables the filter)
        max_price: Maximum hourly price (0 disables the filter). Rows whose
            price is unknown (0) are never removed by this filter.
        sort_by: Sort key
        sort_desc: Reverse the sort order
        with_scores: Enrich rows with AWS Spot Placement Scores
        per_az: Request AZ-level scores instead of region-level
        min_score: Drop rows scoring below this (0 disables the filter)
        score_timeout: Enrichment deadline in seconds (None = provider default)
    """

    model_config = ConfigDict(frozen=True)

    regions: list[str] = Field(default_factory=lambda: [ALL_REGIONS])
    pattern: str = ""
    os: str = InstanceOS.LINUX.value
    min_cpu: int = Field(default=0, ge=0)
    min_ram_gb: int = Field(default=0, ge=0)
    max_price: float = Field(default=0.0, ge=0)
    sort_by: SortBy = SortBy.RANGE
    sort_desc: bool = False
    with_scores: bool = False
    per_az: bool = False
    min_score: int = Field(default=0, ge=0, le=10)
    score_timeout: float | None = Field(default=None, gt=0)

    @property
    def all_regions(self) -> bool:
        return self.regions == [ALL_REGIONS]


class Advice(BaseModel):
    """A single result row.

    Attributes:
        region: AWS region code
        instance: Instance type
        band: Interruption frequency band
        savings: Savings over on-demand in percent
        info: Instance type details
        price: Hourly spot price in USD (0 if not published)
        region_score: Region-level placement score (1-10)
        zone_scores: AZ-level placement scores keyed by AZ id
        score_fetched_at: When the attached score was fetched from AWS
    """

    region: str
    instance: str
    band: InterruptionBand
    savings: int
    info: TypeInfo
    price: float = 0.0
    region_score: int | None = None
    zone_scores: dict[str, int] | None = None
    score_fetched_at: datetime | None = None

    @property
    def average_interruption(self) -> float:
        return self.band.average

    @property
    def best_score(self) -> int | None:
        """Region score, else the best AZ score, else None."""
        if self.region_score is not None:
            return self.region_score
        if self.zone_scores:
            return max(self.zone_scores.values())
        return None

    @property
    def has_score(self) -> bool:
        return self.region_score is not None or bool(self.zone_scores)


class ScoreCacheEntry(BaseModel):
    """Cached placement score for one (region, instance, OS, per_az) key."""

    model_config = ConfigDict(frozen=True)

    region_score: int | None = None
    zone_scores: dict[str, int] | None = None
    fetched_at: datetime

    @property
    def freshness(self) -> FreshnessLevel:
        return score_freshness(self.fetched_at)


__all__ = [
    "ALL_REGIONS",
    "BAND_MIN_BY_MAX",
    "Advice",
    "AdvisorDataset",
    "FreshnessLevel",
    "InstanceOS",
    "InstancePrice",
    "InterruptionBand",
    "PricingDataset",
    "Query",
    "RegionAdvice",
    "ScoreCacheEntry",
    "SortBy",
    "SpotAdvice",
    "TypeInfo",
    "score_freshness",
]
