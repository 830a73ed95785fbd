"""Advice engine.

The engine joins the advisor and pricing datasets for a ``Query``: it selects
regions, filters instance types, sorts the rows and optionally enriches them
with placement scores. It owns the two dataset loaders and the score provider,
so every cache lives exactly as long as the engine instance.
"""

import asyncio
import re

from spotinfo.config import SpotinfoConfig, default_config
from spotinfo.errors import SpotinfoError
from spotinfo.filters import (
    compile_pattern,
    matches_pattern,
    meets_min_score,
    meets_specs,
    within_price,
)
from spotinfo.loaders import AdvisorLoader, PricingLoader
from spotinfo.models import (
    Advice,
    AdvisorDataset,
    InstanceOS,
    PricingDataset,
    Query,
    SortBy,
)
from spotinfo.observability import get_observability_manager
from spotinfo.scores import ScoreProvider
from spotinfo.sorting import sort_advices


class AdviceEngine:
    """Computes spot advice rows for queries.

    Build one engine per process and share it between requests; it holds no
    per-request state.

    Attributes:
        config: Configuration settings
        advisor: Spot Advisor dataset loader
        pricing: Spot Pricing dataset loader
        scores: Placement score provider
    """

    def __init__(
        self,
        config: SpotinfoConfig | None = None,
        advisor: AdvisorLoader | None = None,
        pricing: PricingLoader | None = None,
        scores: ScoreProvider | None = None,
    ) -> None:
        self.config = config or default_config.model_copy(deep=True)
        self.advisor = advisor or AdvisorLoader(self.config)
        self.pricing = pricing or PricingLoader(self.config)
        self.scores = scores or ScoreProvider(self.config)

        self._obs_manager = get_observability_manager(self.config.observability)
        self._logger = self._obs_manager.get_logger(__name__)

    @classmethod
    def from_config(cls, config: SpotinfoConfig) -> "AdviceEngine":
        return cls(config=config)

    async def datasets(self) -> tuple[AdvisorDataset, PricingDataset]:
        """Load (once) and return both datasets."""
        advisor, pricing = await asyncio.gather(self.advisor.load(), self.pricing.load())
        return advisor, pricing

    async def data_source(self) -> str:
        """Return "embedded" if either dataset fell back to its embedded copy."""
        advisor, pricing = await self.datasets()
        return "embedded" if advisor.embedded or pricing.embedded else "live"

    async def regions(self) -> list[str]:
        """Return the sorted regions of the advisor dataset."""
        advisor = await self.advisor.load()
        return sorted(advisor.region_names())

    async def get_spot_savings(self, query: Query) -> list[Advice]:
        """Compute advice rows for ``query``.

        Args:
            query: Request criteria

        Returns:
            Filtered and sorted advice rows

        Raises:
            InvalidOSError: If ``query.os`` is neither linux nor windows
            InvalidPatternError: If ``query.pattern`` does not compile
            RegionNotFoundError: If a requested region is unknown
            DataUnavailableError: If a dataset cannot be loaded at all
        """
        with self._obs_manager.trace_operation(
            "get_spot_savings",
            regions=",".join(query.regions),
            os=query.os,
            pattern=query.pattern,
            sort_by=query.sort_by.value,
            with_scores=query.with_scores,
        ) as span:
            try:
                os = InstanceOS.parse(query.os)
                pattern = compile_pattern(query.pattern)
                advisor, pricing = await self.datasets()

                regions = advisor.region_names() if query.all_regions else query.regions
                rows = self._collect(advisor, pricing, regions, os, query, pattern)

                if query.sort_by is not SortBy.SCORE:
                    rows = sort_advices(rows, query.sort_by, query.sort_desc)

                if query.with_scores:
                    await self.scores.enrich(
                        rows,
                        os=os,
                        per_az=query.per_az,
                        timeout=query.score_timeout,
                    )

                if query.min_score > 0:
                    rows = [row for row in rows if meets_min_score(row, query.min_score)]

                if query.sort_by is SortBy.SCORE:
                    rows = sort_advices(rows, SortBy.SCORE, query.sort_desc)

            except SpotinfoError as e:
                self._logger.debug(
                    "Query rejected",
                    error_kind=e.kind.value,
                    error_message=str(e),
                )
                raise
            except Exception as e:
                self._logger.error("Failed to compute spot advice", error=e)
                raise

            self._logger.debug(
                "Computed spot advice",
                regions=len(regions),
                results=len(rows),
            )
            if span:
                span.set_attribute("result_count", len(rows))
            return rows

    @staticmethod
    def _collect(
        advisor: AdvisorDataset,
        pricing: PricingDataset,
        regions: list[str],
        os: InstanceOS,
        query: Query,
        pattern: re.Pattern[str] | None,
    ) -> list[Advice]:
        rows: list[Advice] = []
        for region in regions:
            for instance, advice in advisor.region_advice(region, os).items():
                if not matches_pattern(instance, pattern):
                    continue
                info = advisor.type_info(instance)
                if info is None or not meets_specs(info, query.min_cpu, query.min_ram_gb):
                    continue
                price = pricing.spot_price(region, instance, os)
                if not within_price(price, query.max_price):
                    continue
                band = advisor.band(advice.band_index)
                if band is None:
                    continue
                rows.append(
                    Advice(
                        region=region,
                        instance=instance,
                        band=band,
                        savings=advice.savings,
                        info=info,
                        price=price,
                    )
                )
        return rows


__all__ = ["AdviceEngine"]
