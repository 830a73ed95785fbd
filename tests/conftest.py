"""Shared fixtures for spotinfo tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest

import spotinfo.observability as observability
from spotinfo.config import HttpClientConfig, ObservabilityConfig, SpotinfoConfig
from spotinfo.engine import AdviceEngine
from spotinfo.loaders import AdvisorLoader, PricingLoader
from spotinfo.models import (
    Advice,
    AdvisorDataset,
    InstancePrice,
    InterruptionBand,
    PricingDataset,
    RegionAdvice,
    SpotAdvice,
    TypeInfo,
)
from spotinfo.scores import ScoreProvider


@pytest.fixture(autouse=True)
def reset_observability_manager():
    """Reset the global observability manager before and after each test."""
    observability._observability_manager = None
    yield
    observability._observability_manager = None


@pytest.fixture
def offline_config():
    """Configuration that never touches the network."""
    return SpotinfoConfig(
        http_client=HttpClientConfig(offline=True),
        observability=ObservabilityConfig(enabled=False),
    )


@pytest.fixture
def online_config():
    """Configuration with live fetches enabled and no retries."""
    return SpotinfoConfig(
        http_client=HttpClientConfig(timeout=1, max_retries=0),
        observability=ObservabilityConfig(enabled=False),
    )


@pytest.fixture
def bands():
    """The five bands AWS publishes."""
    return [
        InterruptionBand.from_max("<5%", 5),
        InterruptionBand.from_max("5-10%", 11),
        InterruptionBand.from_max("10-15%", 16),
        InterruptionBand.from_max("15-20%", 22),
        InterruptionBand.from_max(">20%", 100),
    ]


@pytest.fixture
def advisor_dataset(bands):
    """Small advisor dataset with two regions."""
    return AdvisorDataset(
        bands=bands,
        types={
            "m5.large": TypeInfo(cores=2, ram_gb=8),
            "m5.xlarge": TypeInfo(cores=4, ram_gb=16),
            "c5.large": TypeInfo(cores=2, ram_gb=4),
            "t3.micro": TypeInfo(cores=2, ram_gb=1),
        },
        regions={
            "us-east-1": RegionAdvice(
                linux={
                    "m5.large": SpotAdvice(band_index=0, savings=54),
                    "m5.xlarge": SpotAdvice(band_index=2, savings=55),
                    "c5.large": SpotAdvice(band_index=1, savings=57),
                    "t3.micro": SpotAdvice(band_index=0, savings=70),
                    # no TypeInfo, skipped
                    "x9.mystery": SpotAdvice(band_index=0, savings=90),
                },
                windows={"m5.large": SpotAdvice(band_index=1, savings=33)},
            ),
            "eu-west-1": RegionAdvice(
                linux={
                    "m5.large": SpotAdvice(band_index=1, savings=58),
                    "c5.large": SpotAdvice(band_index=4, savings=63),
                    # unknown band index, skipped
                    "t3.micro": SpotAdvice(band_index=9, savings=70),
                },
            ),
        },
    )


@pytest.fixture
def pricing_dataset():
    """Prices for the small advisor dataset; eu-west-1 c5.large is unpublished."""
    return PricingDataset(
        regions={
            "us-east-1": {
                "m5.large": InstancePrice(linux=0.035, windows=0.127),
                "m5.xlarge": InstancePrice(linux=0.0712, windows=0.254),
                "c5.large": InstancePrice(linux=0.0329, windows=0.121),
                "t3.micro": InstancePrice(linux=0.0031, windows=0.0123),
            },
            "eu-west-1": {
                "m5.large": InstancePrice(linux=0.0402, windows=0.1352),
            },
        },
    )


@pytest.fixture
def fake_session():
    """boto3 session stand-in with credentials and a mocked EC2 client."""
    session = MagicMock()
    session.get_credentials.return_value = MagicMock()
    session.client.return_value.get_spot_placement_scores.return_value = {
        "SpotPlacementScores": [{"Region": "us-east-1", "Score": 7}]
    }
    return session


@pytest.fixture
def make_engine(offline_config, advisor_dataset, pricing_dataset, fake_session):
    """Build an engine whose loaders return the given datasets."""

    def _make(advisor=None, pricing=None, session=None, config=None):
        config = config or offline_config
        advisor_loader = AdvisorLoader(config)
        advisor_loader.load = AsyncMock(return_value=advisor or advisor_dataset)
        pricing_loader = PricingLoader(config)
        pricing_loader.load = AsyncMock(return_value=pricing or pricing_dataset)
        scores = ScoreProvider(config, session=session or fake_session)
        return AdviceEngine(config, advisor=advisor_loader, pricing=pricing_loader, scores=scores)

    return _make


@pytest.fixture
def engine(make_engine):
    """Engine over the small in-memory datasets."""
    return make_engine()


@pytest.fixture
def embedded_engine(offline_config, fake_session):
    """Engine over the embedded datasets."""
    return AdviceEngine(offline_config, scores=ScoreProvider(offline_config, session=fake_session))


@pytest.fixture
def make_advice(bands):
    """Build an advice row; ``band`` indexes the AWS bands."""

    def _make(
        instance="m5.large",
        region="us-east-1",
        band=0,
        savings=50,
        price=0.05,
        cores=2,
        ram_gb=8.0,
        **scores,
    ):
        return Advice(
            region=region,
            instance=instance,
            band=bands[band] if isinstance(band, int) else band,
            savings=savings,
            info=TypeInfo(cores=cores, ram_gb=ram_gb),
            price=price,
            **scores,
        )

    return _make
