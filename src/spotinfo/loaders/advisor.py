"""Spot Advisor dataset loader.

The advisor dataset carries the interruption frequency bands, the savings
over on-demand per region/OS/instance type and the instance type details.
"""

import json
from typing import Any

from pydantic import ValidationError

from spotinfo import assets
from spotinfo.base import BaseLoader
from spotinfo.models import (
    AdvisorDataset,
    InterruptionBand,
    RegionAdvice,
    SpotAdvice,
    TypeInfo,
)

ADVISOR_URL = "https://spot-bid-advisor.s3.amazonaws.com/spot-advisor-data.json"


class AdvisorLoader(BaseLoader[AdvisorDataset]):
    """Loader for the Spot Advisor dataset."""

    @property
    def source_name(self) -> str:
        return "advisor"

    @property
    def url(self) -> str:
        return ADVISOR_URL

    def embedded_bytes(self) -> bytes:
        return assets.advisor_bytes()

    def parse(self, raw: bytes, *, embedded: bool) -> AdvisorDataset:
        """Parse the advisor JSON document.

        Unknown band limits fail the whole document. Individual instance
        entries that do not validate are skipped.

        Raises:
            ValueError: On malformed JSON or an unusable document
            KeyError: When a required top-level section is missing
        """
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("advisor data is not a JSON object")

        bands = [
            InterruptionBand.from_max(band["label"], int(band["max"]))
            for band in sorted(data["ranges"], key=lambda b: b.get("index", 0))
        ]
        types = self._parse_types(data["instance_types"])
        regions = {
            region: RegionAdvice(
                linux=self._parse_advice(region, "Linux", by_os.get("Linux") or {}),
                windows=self._parse_advice(region, "Windows", by_os.get("Windows") or {}),
            )
            for region, by_os in data["spot_advisor"].items()
        }

        return AdvisorDataset(bands=bands, types=types, regions=regions, embedded=embedded)

    def _parse_types(self, raw_types: dict[str, Any]) -> dict[str, TypeInfo]:
        types: dict[str, TypeInfo] = {}
        for instance, info in raw_types.items():
            try:
                types[instance] = TypeInfo(**info)
            except (ValidationError, TypeError) as e:
                self._logger.debug(
                    "Skipping instance type", instance=instance, error_message=str(e)
                )
        return types

    def _parse_advice(
        self, region: str, os_name: str, entries: dict[str, Any]
    ) -> dict[str, SpotAdvice]:
        advice: dict[str, SpotAdvice] = {}
        for instance, entry in entries.items():
            try:
                advice[instance] = SpotAdvice(band_index=entry["r"], savings=entry["s"])
            except (ValidationError, KeyError, TypeError) as e:
                self._logger.debug(
                    "Skipping advisor entry",
                    region=region,
                    os=os_name,
                    instance=instance,
                    error_message=str(e),
                )
        return advice


__all__ = ["ADVISOR_URL", "AdvisorLoader"]
