"""Loaders for the AWS Spot Advisor and Spot Pricing datasets."""

from spotinfo.loaders.advisor import ADVISOR_URL, AdvisorLoader
from spotinfo.loaders.pricing import PRICING_URL, PricingLoader

__all__ = ["ADVISOR_URL", "PRICING_URL", "AdvisorLoader", "PricingLoader"]
