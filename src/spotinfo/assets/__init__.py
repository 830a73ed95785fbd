"""Embedded copies of the Spot Advisor and Spot Pricing datasets.

Loaders fall back to these when the live endpoints cannot be reached.
Regenerate them from the live feeds with ``spotinfo-refresh-data``.
"""

from importlib import resources

ADVISOR_ASSET = "advisor.json"
PRICING_ASSET = "pricing.json"


def _read(name: str) -> bytes:
    return resources.files(__name__).joinpath(name).read_bytes()


def advisor_bytes() -> bytes:
    """Return the embedded Spot Advisor dataset."""
    return _read(ADVISOR_ASSET)


def pricing_bytes() -> bytes:
    """Return the embedded Spot Pricing dataset (JSON, JSONP wrapper optional)."""
    return _read(PRICING_ASSET)


__all__ = ["ADVISOR_ASSET", "PRICING_ASSET", "advisor_bytes", "pricing_bytes"]
