"""AWS Spot Placement Score enrichment.

Scores come from the EC2 ``GetSpotPlacementScores`` API through boto3. Calls
are blocking and run on a provider-owned pool of ``max_concurrency`` threads;
a call abandoned at the deadline keeps its worker until it returns. Results
are cached per (region, instance type, OS, per-AZ) for the lifetime of the
provider and shared between concurrent enrichments.
"""

import asyncio
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError

from spotinfo.config import SpotinfoConfig, default_config
from spotinfo.models import Advice, InstanceOS, ScoreCacheEntry
from spotinfo.observability import get_observability_manager

ScoreKey = tuple[str, str, str, bool]

# Adaptive mode adds client-side rate limiting on top of retrying throttled calls
CLIENT_CONFIG = Config(retries={"mode": "adaptive", "max_attempts": 5})


class ScoreProvider:
    """Fetches, caches and applies spot placement scores.

    Attributes:
        config: Configuration with the ``scores`` section
    """

    def __init__(
        self,
        config: SpotinfoConfig | None = None,
        session: boto3.Session | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            config: Optional configuration override
            session: boto3 session to create EC2 clients from (defaults to a
                    new session using the standard credential chain)
        """
        self.config = config or default_config.model_copy(deep=True)
        self._session = session
        self._clients: dict[str, Any] = {}
        self._clients_lock = threading.Lock()
        self._cache: dict[ScoreKey, ScoreCacheEntry] = {}
        self._inflight: dict[ScoreKey, asyncio.Task[ScoreCacheEntry]] = {}
        self._waiters: Counter[ScoreKey] = Counter()
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.scores.max_concurrency,
            thread_name_prefix="spotinfo-scores",
        )

        self._obs_manager = get_observability_manager(self.config.observability)
        self._logger = self._obs_manager.get_logger(__name__)

    @property
    def session(self) -> boto3.Session:
        if self._session is None:
            self._session = boto3.Session()
        return self._session

    def cached(
        self, region: str, instance: str, os: InstanceOS, per_az: bool
    ) -> ScoreCacheEntry | None:
        return self._cache.get((region, instance, os.value, per_az))

    def shutdown(self) -> None:
        """Release the worker threads without waiting for calls still running."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    def has_credentials(self) -> bool:
        """Return True when the boto3 credential chain resolves to credentials."""
        try:
            return self.session.get_credentials() is not None
        except BotoCoreError as e:
            self._logger.debug("Unable to resolve AWS credentials", error_message=str(e))
            return False

    async def enrich(
        self,
        rows: list[Advice],
        *,
        os: InstanceOS,
        per_az: bool,
        timeout: float | None = None,
    ) -> int:
        """Attach placement scores to ``rows`` in place.

        Cached scores are applied directly; the rest are fetched concurrently
        under a single deadline. Scores that do not arrive in time, and keys
        whose fetch failed, leave their rows unscored.

        Args:
            rows: Advice rows to enrich
            os: Operating system the rows were computed for
            per_az: Request AZ-level scores instead of region-level ones
            timeout: Deadline in seconds (defaults to ``scores.timeout``)

        Returns:
            Number of rows that received a score
        """
        if not rows:
            return 0

        timeout = timeout or self.config.scores.timeout
        keys: dict[ScoreKey, None] = dict.fromkeys(
            (row.region, row.instance, os.value, per_az) for row in rows
        )
        entries: dict[ScoreKey, ScoreCacheEntry] = {}
        missing: list[ScoreKey] = []
        for key in keys:
            if key in self._cache:
                entries[key] = self._cache[key]
            else:
                missing.append(key)

        if missing:
            if await asyncio.to_thread(self.has_credentials):
                entries.update(await self._fetch_all(missing, timeout))
            else:
                self._logger.debug(
                    "No AWS credentials, skipping placement scores",
                    requested=len(missing),
                )

        scored = 0
        for row in rows:
            entry = entries.get((row.region, row.instance, os.value, per_az))
            if entry is None or (entry.region_score is None and not entry.zone_scores):
                continue
            row.region_score = entry.region_score
            row.zone_scores = dict(entry.zone_scores) if entry.zone_scores else None
            row.score_fetched_at = entry.fetched_at
            scored += 1

        self._logger.debug(
            "Applied placement scores",
            rows=len(rows),
            scored=scored,
            cached=len(keys) - len(missing),
            fetched=len(missing),
        )
        return scored

    async def _fetch_all(
        self, keys: list[ScoreKey], timeout: float
    ) -> dict[ScoreKey, ScoreCacheEntry]:
        tasks = {self._shared_fetch(key): key for key in keys}
        done: set[asyncio.Task[ScoreCacheEntry]] = set()
        pending: set[asyncio.Task[ScoreCacheEntry]] = set(tasks)
        try:
            done, pending = await asyncio.wait(set(tasks), timeout=timeout)
        finally:
            for key in keys:
                self._waiters[key] -= 1
                if self._waiters[key] <= 0:
                    del self._waiters[key]
            # Fetches still awaited by another enrichment keep running.
            for task in pending:
                if tasks[task] not in self._waiters:
                    task.cancel()

        if pending:
            self._logger.warning(
                "Placement score deadline elapsed",
                timeout=timeout,
                pending=len(pending),
                completed=len(done),
            )

        results: dict[ScoreKey, ScoreCacheEntry] = {}
        for task in done:
            if task.cancelled() or task.exception() is not None:
                continue
            results[tasks[task]] = task.result()
        return results

    def _shared_fetch(self, key: ScoreKey) -> "asyncio.Task[ScoreCacheEntry]":
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch(key))
            self._inflight[key] = task
            task.add_done_callback(lambda t, key=key: self._fetch_done(key, t))
        self._waiters[key] += 1
        return task

    def _fetch_done(self, key: ScoreKey, task: "asyncio.Task[ScoreCacheEntry]") -> None:
        self._inflight.pop(key, None)
        if not task.cancelled():
            # Marks the exception as retrieved; it was already logged.
            task.exception()

    async def _fetch(self, key: ScoreKey) -> ScoreCacheEntry:
        region, instance, _, per_az = key
        loop = asyncio.get_running_loop()
        try:
            entry = await loop.run_in_executor(
                self._executor, self.fetch_scores, region, instance, per_az
            )
        except Exception as e:
            self._logger.warning(
                "Failed to fetch placement score",
                region=region,
                instance=instance,
                per_az=per_az,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            raise
        self._cache[key] = entry
        return entry

    def fetch_scores(self, region: str, instance: str, per_az: bool) -> ScoreCacheEntry:
        """Call GetSpotPlacementScores for one instance type in one region.

        This is a blocking call; ``enrich`` runs it in a worker thread.

        Returns:
            Cache entry with a region score, or AZ scores keyed by AZ id
        """
        client = self._client(region)
        params: dict[str, Any] = {
            "InstanceTypes": [instance],
            "RegionNames": [region],
            "SingleAvailabilityZone": per_az,
            "TargetCapacity": self.config.scores.target_capacity,
        }

        region_score: int | None = None
        zone_scores: dict[str, int] = {}
        while True:
            response = client.get_spot_placement_scores(**params)
            for item in response.get("SpotPlacementScores", []):
                score = item.get("Score")
                if score is None:
                    continue
                if per_az:
                    zone = item.get("AvailabilityZoneId") or item.get("AvailabilityZone")
                    if zone:
                        zone_scores[zone] = max(int(score), zone_scores.get(zone, 0))
                elif item.get("Region", region) == region:
                    region_score = max(int(score), region_score or 0)

            next_token = response.get("NextToken")
            if not next_token:
                break
            params["NextToken"] = next_token

        return ScoreCacheEntry(
            region_score=region_score,
            zone_scores=zone_scores or None,
            fetched_at=datetime.now(UTC),
        )

    def _client(self, region: str) -> Any:
        with self._clients_lock:
            if region not in self._clients:
                self._clients[region] = self.session.client(
                    "ec2", region_name=region, config=CLIENT_CONFIG
                )
            return self._clients[region]


__all__ = ["ScoreKey", "ScoreProvider"]
