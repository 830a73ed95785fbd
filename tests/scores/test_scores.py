"""Tests for spot placement score enrichment."""

import asyncio
import threading
import time
from datetime import UTC, datetime
from unittest.mock import MagicMock

from botocore.exceptions import ClientError, NoCredentialsError

from spotinfo.config import ScoreConfig
from spotinfo.models import InstanceOS, ScoreCacheEntry
from spotinfo.scores import CLIENT_CONFIG, ScoreProvider


def score_client(session: MagicMock) -> MagicMock:
    return session.client.return_value


def throttled() -> ClientError:
    return ClientError(
        {"Error": {"Code": "RequestLimitExceeded", "Message": "Request limit exceeded."}},
        "GetSpotPlacementScores",
    )


class TestFetchScores:
    """Tests for the blocking GetSpotPlacementScores call."""

    def test_region_score(self, offline_config, fake_session):
        """Test a region-level request for one instance type."""
        provider = ScoreProvider(offline_config, session=fake_session)

        entry = provider.fetch_scores("us-east-1", "m5.large", per_az=False)

        assert entry.region_score == 7
        assert entry.zone_scores is None
        fake_session.client.assert_called_once_with(
            "ec2", region_name="us-east-1", config=CLIENT_CONFIG
        )
        score_client(fake_session).get_spot_placement_scores.assert_called_once_with(
            InstanceTypes=["m5.large"],
            RegionNames=["us-east-1"],
            SingleAvailabilityZone=False,
            TargetCapacity=1,
        )

    def test_zone_scores(self, offline_config, fake_session):
        """Test AZ-level scores are keyed by AZ id."""
        score_client(fake_session).get_spot_placement_scores.return_value = {
            "SpotPlacementScores": [
                {"Region": "us-east-1", "AvailabilityZoneId": "use1-az1", "Score": 9},
                {"Region": "us-east-1", "AvailabilityZoneId": "use1-az2", "Score": 3},
                {"Region": "us-east-1", "AvailabilityZone": "us-east-1c", "Score": 5},
            ]
        }
        provider = ScoreProvider(offline_config, session=fake_session)

        entry = provider.fetch_scores("us-east-1", "m5.large", per_az=True)

        assert entry.region_score is None
        assert entry.zone_scores == {"use1-az1": 9, "use1-az2": 3, "us-east-1c": 5}

    def test_pagination(self, offline_config, fake_session):
        """Test NextToken pages are followed."""
        client = score_client(fake_session)
        client.get_spot_placement_scores.side_effect = [
            {"SpotPlacementScores": [{"Region": "us-east-1", "Score": 4}], "NextToken": "t1"},
            {"SpotPlacementScores": [{"Region": "us-east-1", "Score": 6}]},
        ]
        provider = ScoreProvider(offline_config, session=fake_session)

        entry = provider.fetch_scores("us-east-1", "m5.large", per_az=False)

        assert entry.region_score == 6
        assert client.get_spot_placement_scores.call_count == 2
        assert client.get_spot_placement_scores.call_args.kwargs["NextToken"] == "t1"

    def test_other_regions_ignored(self, offline_config, fake_session):
        """Test scores for other regions do not leak into the region score."""
        score_client(fake_session).get_spot_placement_scores.return_value = {
            "SpotPlacementScores": [{"Region": "us-west-2", "Score": 10}]
        }
        provider = ScoreProvider(offline_config, session=fake_session)

        assert provider.fetch_scores("us-east-1", "m5.large", per_az=False).region_score is None

    def test_clients_reused_per_region(self, offline_config, fake_session):
        """Test one EC2 client is created per region."""
        provider = ScoreProvider(offline_config, session=fake_session)

        provider.fetch_scores("us-east-1", "m5.large", per_az=False)
        provider.fetch_scores("us-east-1", "c5.large", per_az=False)

        fake_session.client.assert_called_once()

    def test_client_uses_adaptive_retries(self, offline_config, fake_session):
        """Test throttled calls are retried with client-side rate limiting."""
        provider = ScoreProvider(offline_config, session=fake_session)

        provider.fetch_scores("eu-west-1", "m5.large", per_az=False)

        config = fake_session.client.call_args.kwargs["config"]
        assert config.retries == {"mode": "adaptive", "max_attempts": 5}


class TestEnrich:
    """Tests for ScoreProvider.enrich."""

    async def test_applies_region_scores(self, offline_config, fake_session, make_advice):
        """Test rows receive the region score and the fetch time."""
        provider = ScoreProvider(offline_config, session=fake_session)
        rows = [make_advice("m5.large"), make_advice("c5.large")]

        scored = await provider.enrich(rows, os=InstanceOS.LINUX, per_az=False)

        assert scored == 2
        assert all(row.region_score == 7 for row in rows)
        assert all(row.score_fetched_at is not None for row in rows)
        assert provider.cached("us-east-1", "m5.large", InstanceOS.LINUX, False) is not None

    async def test_applies_zone_scores(self, offline_config, fake_session, make_advice):
        """Test AZ enrichment sets zone scores only."""
        score_client(fake_session).get_spot_placement_scores.return_value = {
            "SpotPlacementScores": [
                {"AvailabilityZoneId": "use1-az1", "Score": 8},
                {"AvailabilityZoneId": "use1-az4", "Score": 2},
            ]
        }
        provider = ScoreProvider(offline_config, session=fake_session)
        rows = [make_advice("m5.large")]

        await provider.enrich(rows, os=InstanceOS.LINUX, per_az=True)

        assert rows[0].region_score is None
        assert rows[0].zone_scores == {"use1-az1": 8, "use1-az4": 2}
        assert rows[0].best_score == 8

    async def test_cache_avoids_second_call(self, offline_config, fake_session, make_advice):
        """Test a repeated enrichment is served from the cache."""
        provider = ScoreProvider(offline_config, session=fake_session)

        await provider.enrich([make_advice()], os=InstanceOS.LINUX, per_az=False)
        rows = [make_advice()]
        await provider.enrich(rows, os=InstanceOS.LINUX, per_az=False)

        assert rows[0].region_score == 7
        score_client(fake_session).get_spot_placement_scores.assert_called_once()

    async def test_duplicate_keys_fetched_once(self, offline_config, fake_session, make_advice):
        """Test rows sharing a key cause one call."""
        provider = ScoreProvider(offline_config, session=fake_session)
        rows = [make_advice(price=0.01), make_advice(price=0.02)]

        assert await provider.enrich(rows, os=InstanceOS.LINUX, per_az=False) == 2
        score_client(fake_session).get_spot_placement_scores.assert_called_once()

    async def test_cache_keyed_by_os_and_scope(self, offline_config, fake_session, make_advice):
        """Test OS and per-AZ are part of the cache key."""
        provider = ScoreProvider(offline_config, session=fake_session)

        await provider.enrich([make_advice()], os=InstanceOS.LINUX, per_az=False)
        await provider.enrich([make_advice()], os=InstanceOS.WINDOWS, per_az=False)
        await provider.enrich([make_advice()], os=InstanceOS.LINUX, per_az=True)

        assert score_client(fake_session).get_spot_placement_scores.call_count == 3

    async def test_concurrent_enrichments_share_fetch(
        self, offline_config, fake_session, make_advice
    ):
        """Test concurrent enrichments of the same key make one call."""

        def slow_scores(**kwargs):
            time.sleep(0.1)
            return {"SpotPlacementScores": [{"Region": "us-east-1", "Score": 5}]}

        score_client(fake_session).get_spot_placement_scores.side_effect = slow_scores
        provider = ScoreProvider(offline_config, session=fake_session)
        first, second = [make_advice()], [make_advice()]

        await asyncio.gather(
            provider.enrich(first, os=InstanceOS.LINUX, per_az=False),
            provider.enrich(second, os=InstanceOS.LINUX, per_az=False),
        )

        assert first[0].region_score == 5
        assert second[0].region_score == 5
        score_client(fake_session).get_spot_placement_scores.assert_called_once()

    async def test_no_credentials_skips(self, offline_config, fake_session, make_advice):
        """Test enrichment is skipped when no credentials resolve."""
        fake_session.get_credentials.return_value = None
        provider = ScoreProvider(offline_config, session=fake_session)
        rows = [make_advice()]

        assert await provider.enrich(rows, os=InstanceOS.LINUX, per_az=False) == 0
        assert rows[0].has_score is False
        fake_session.client.assert_not_called()

    async def test_credential_errors_skip(self, offline_config, fake_session, make_advice):
        """Test botocore credential errors are treated as missing credentials."""
        fake_session.get_credentials.side_effect = NoCredentialsError()
        provider = ScoreProvider(offline_config, session=fake_session)

        assert await provider.enrich([make_advice()], os=InstanceOS.LINUX, per_az=False) == 0

    async def test_failure_not_cached(self, offline_config, fake_session, make_advice):
        """Test a failed fetch leaves rows unscored and is retried next time."""
        client = score_client(fake_session)
        client.get_spot_placement_scores.side_effect = [
            throttled(),
            {"SpotPlacementScores": [{"Region": "us-east-1", "Score": 6}]},
        ]
        provider = ScoreProvider(offline_config, session=fake_session)
        rows = [make_advice()]

        assert await provider.enrich(rows, os=InstanceOS.LINUX, per_az=False) == 0
        assert rows[0].has_score is False
        assert provider.cached("us-east-1", "m5.large", InstanceOS.LINUX, False) is None

        assert await provider.enrich(rows, os=InstanceOS.LINUX, per_az=False) == 1
        assert rows[0].region_score == 6

    async def test_failure_isolated_per_key(self, offline_config, fake_session, make_advice):
        """Test one failing key does not affect the others."""

        def by_instance(**kwargs):
            if kwargs["InstanceTypes"] == ["c5.large"]:
                raise throttled()
            return {"SpotPlacementScores": [{"Region": "us-east-1", "Score": 9}]}

        score_client(fake_session).get_spot_placement_scores.side_effect = by_instance
        provider = ScoreProvider(offline_config, session=fake_session)
        rows = [make_advice("m5.large"), make_advice("c5.large")]

        assert await provider.enrich(rows, os=InstanceOS.LINUX, per_az=False) == 1
        assert rows[0].region_score == 9
        assert rows[1].has_score is False

    async def test_deadline_leaves_rows_unscored(self, offline_config, fake_session, make_advice):
        """Test rows whose score misses the deadline stay unscored."""

        def slow_scores(**kwargs):
            time.sleep(0.3)
            return {"SpotPlacementScores": [{"Region": "us-east-1", "Score": 5}]}

        score_client(fake_session).get_spot_placement_scores.side_effect = slow_scores
        provider = ScoreProvider(offline_config, session=fake_session)
        rows = [make_advice()]

        scored = await provider.enrich(rows, os=InstanceOS.LINUX, per_az=False, timeout=0.05)

        assert scored == 0
        assert rows[0].has_score is False
        assert provider._waiters == {}

    async def test_empty_scores_apply_nothing(self, offline_config, fake_session, make_advice):
        """Test an empty response leaves rows unscored."""
        score_client(fake_session).get_spot_placement_scores.return_value = {
            "SpotPlacementScores": []
        }
        provider = ScoreProvider(offline_config, session=fake_session)
        rows = [make_advice()]

        assert await provider.enrich(rows, os=InstanceOS.LINUX, per_az=False) == 0
        assert rows[0].region_score is None

    async def test_cached_entry_applied_without_credentials(
        self, offline_config, fake_session, make_advice
    ):
        """Test cached scores are used even when nothing is fetched."""
        fake_session.get_credentials.return_value = None
        provider = ScoreProvider(offline_config, session=fake_session)
        fetched_at = datetime(2024, 1, 1, tzinfo=UTC)
        provider._cache[("us-east-1", "m5.large", "linux", False)] = ScoreCacheEntry(
            region_score=4, fetched_at=fetched_at
        )
        rows = [make_advice()]

        assert await provider.enrich(rows, os=InstanceOS.LINUX, per_az=False) == 1
        assert rows[0].region_score == 4
        assert rows[0].score_fetched_at == fetched_at

    async def test_no_rows(self, offline_config, fake_session):
        """Test enriching nothing makes no calls."""
        provider = ScoreProvider(offline_config, session=fake_session)

        assert await provider.enrich([], os=InstanceOS.LINUX, per_az=False) == 0
        fake_session.get_credentials.assert_not_called()

    async def test_deadline_keeps_scores_that_arrived(
        self, offline_config, fake_session, make_advice
    ):
        """Test scores returned before the deadline are applied, late ones are not."""

        def by_instance(**kwargs):
            if kwargs["InstanceTypes"] == ["c5.large"]:
                time.sleep(0.5)
                return {"SpotPlacementScores": [{"Region": "us-east-1", "Score": 2}]}
            return {"SpotPlacementScores": [{"Region": "us-east-1", "Score": 9}]}

        score_client(fake_session).get_spot_placement_scores.side_effect = by_instance
        provider = ScoreProvider(offline_config, session=fake_session)
        rows = [make_advice("m5.large"), make_advice("c5.large")]

        scored = await provider.enrich(rows, os=InstanceOS.LINUX, per_az=False, timeout=0.15)

        assert scored == 1
        assert rows[0].region_score == 9
        assert rows[1].has_score is False
        assert provider.cached("us-east-1", "m5.large", InstanceOS.LINUX, False) is not None
        assert provider.cached("us-east-1", "c5.large", InstanceOS.LINUX, False) is None
        provider.shutdown()

    async def test_abandoned_calls_count_against_concurrency(
        self, offline_config, fake_session, make_advice
    ):
        """Test calls left running after a deadline still hold their worker."""
        lock = threading.Lock()
        state = {"active": 0, "peak": 0}

        def slow_scores(**kwargs):
            with lock:
                state["active"] += 1
                state["peak"] = max(state["peak"], state["active"])
            time.sleep(0.4)
            with lock:
                state["active"] -= 1
            return {"SpotPlacementScores": [{"Region": "us-east-1", "Score": 5}]}

        score_client(fake_session).get_spot_placement_scores.side_effect = slow_scores
        config = offline_config.model_copy(update={"scores": ScoreConfig(max_concurrency=1)})
        provider = ScoreProvider(config, session=fake_session)

        first = [make_advice("m5.large")]
        second = [make_advice("c5.large")]
        assert await provider.enrich(first, os=InstanceOS.LINUX, per_az=False, timeout=0.05) == 0
        assert await provider.enrich(second, os=InstanceOS.LINUX, per_az=False, timeout=0.05) == 0
        await asyncio.to_thread(provider._executor.shutdown, wait=True)

        assert state["peak"] == 1
