"""Spot Pricing dataset loader.

AWS publishes spot prices as a JSONP script (``callback({...});``) using a
few legacy region codes. Both quirks are handled here, before the document
reaches the JSON parser.
"""

import json
import math
from typing import Any

from spotinfo import assets
from spotinfo.base import BaseLoader
from spotinfo.models import InstancePrice, PricingDataset

PRICING_URL = "https://spot-price.s3.amazonaws.com/spot.js"

JSONP_PREFIX = "callback("
JSONP_SUFFIX = ");"

LEGACY_REGIONS: dict[str, str] = {
    "us-east": "us-east-1",
    "us-west": "us-west-1",
    "eu-ireland": "eu-west-1",
    "apac-sin": "ap-southeast-1",
    "apac-syd": "ap-southeast-2",
    "apac-tokyo": "ap-northeast-1",
}

WINDOWS_COLUMN = "mswin"


def strip_jsonp(text: str) -> str:
    """Remove the ``callback(`` ... ``);`` wrapper when present."""
    text = text.strip()
    if text.startswith(JSONP_PREFIX):
        text = text[len(JSONP_PREFIX) :]
    if text.endswith(JSONP_SUFFIX):
        text = text[: -len(JSONP_SUFFIX)]
    return text


def normalize_region(region: str) -> str:
    return LEGACY_REGIONS.get(region, region)


def parse_price(value: Any) -> float:
    """Parse a published price; anything unparseable, non-finite or negative is 0."""
    try:
        price = float(value)
    except (TypeError, ValueError):
        return 0.0
    return price if math.isfinite(price) and price >= 0 else 0.0


class PricingLoader(BaseLoader[PricingDataset]):
    """Loader for the Spot Pricing dataset."""

    @property
    def source_name(self) -> str:
        return "pricing"

    @property
    def url(self) -> str:
        return PRICING_URL

    def embedded_bytes(self) -> bytes:
        return assets.pricing_bytes()

    def parse(self, raw: bytes, *, embedded: bool) -> PricingDataset:
        """Parse the pricing document into region -> instance -> prices.

        Raises:
            ValueError: On malformed JSON or an unusable document
            KeyError: When ``config.regions`` is missing
        """
        data = json.loads(strip_jsonp(raw.decode("utf-8")))
        if not isinstance(data, dict):
            raise ValueError("pricing data is not a JSON object")

        regions: dict[str, dict[str, InstancePrice]] = {}
        for region_data in data["config"]["regions"]:
            region = normalize_region(region_data["region"])
            prices = regions.setdefault(region, {})
            for instance_type in region_data.get("instanceTypes") or []:
                for size in instance_type.get("sizes") or []:
                    prices[size["size"]] = self._parse_size(size)

        return PricingDataset(regions=regions, embedded=embedded)

    @staticmethod
    def _parse_size(size: dict[str, Any]) -> InstancePrice:
        linux = windows = 0.0
        for column in size.get("valueColumns") or []:
            price = parse_price((column.get("prices") or {}).get("USD"))
            if column.get("name") == WINDOWS_COLUMN:
                windows = price
            else:
                linux = price
        return InstancePrice(linux=linux, windows=windows)


__all__ = [
    "LEGACY_REGIONS",
    "PRICING_URL",
    "PricingLoader",
    "normalize_region",
    "parse_price",
    "strip_jsonp",
]
