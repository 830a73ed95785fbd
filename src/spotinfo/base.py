"""Base loader class for the published AWS datasets.

This module defines the abstract base class the advisor and pricing loaders
extend: a one-shot, memoized load that tries the live endpoint first and falls
back to the embedded copy of the dataset.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from functools import wraps
from typing import Any, Generic, TypeVar

import aiohttp

from spotinfo.config import SpotinfoConfig, default_config
from spotinfo.errors import DataUnavailableError
from spotinfo.observability import get_observability_manager

T = TypeVar("T")


def backoff_delays(config: SpotinfoConfig) -> Iterator[float]:
    """Yield the pause before each retry: ``base_delay * backoff_factor ** n``."""
    for n in range(config.max_retries):
        yield config.base_delay * config.backoff_factor**n


def with_retry(func: Callable[..., Any]) -> Callable[..., Any]:
    """Retry an async loader method with exponential backoff.

    Attempts and delays come from the loader's ``http_client`` settings. With
    the default ``max_retries`` of 0 the call is made once and its error
    propagates unchanged.
    """

    @wraps(func)
    async def wrapper(self: "BaseLoader[Any]", *args: Any, **kwargs: Any) -> Any:
        logger = get_observability_manager(self.config.observability).get_logger(__name__)
        attempts = self.config.max_retries + 1

        for attempt, delay in enumerate(backoff_delays(self.config), start=1):
            try:
                return await func(self, *args, **kwargs)
            except Exception as e:
                logger.warning(
                    "Download failed, retrying",
                    source=self.source_name,
                    attempt=f"{attempt}/{attempts}",
                    retry_delay=delay,
                    error_type=type(e).__name__,
                    error_message=str(e),
                )
            await asyncio.sleep(delay)

        # Final attempt
        try:
            return await func(self, *args, **kwargs)
        except Exception as e:
            logger.debug(
                "Download failed", source=self.source_name, attempts=attempts, error=str(e)
            )
            raise

    return wrapper


class BaseLoader(ABC, Generic[T]):
    """Abstract base class for dataset loaders.

    ``load()`` resolves once per loader instance. Concurrent first callers
    share a single initialization task; its outcome (live dataset, embedded
    dataset or ``DataUnavailableError``) is returned to every later caller and
    the live endpoint is not contacted again unless ``refresh()`` is called.

    Attributes:
        config: Configuration settings for timeout, retries and offline mode
        source_name: Short dataset name used in logs (implemented by subclass)
        url: Live endpoint of the dataset (implemented by subclass)
    """

    def __init__(self, config: SpotinfoConfig | None = None) -> None:
        """Initialize the loader with optional configuration.

        Args:
            config: Optional configuration override. If not provided, uses a
                   per-instance copy of the default configuration
        """
        self.config = config or default_config.model_copy(deep=True)
        self._task: asyncio.Task[T] | None = None

        self._obs_manager = get_observability_manager(self.config.observability)
        self._logger = self._obs_manager.get_logger(__name__)

    @property
    @abstractmethod
    def source_name(self) -> str:
        """Return the dataset name (e.g. "advisor", "pricing")."""

    @property
    @abstractmethod
    def url(self) -> str:
        """Return the live endpoint URL."""

    @abstractmethod
    def embedded_bytes(self) -> bytes:
        """Return the embedded copy of the dataset."""

    @abstractmethod
    def parse(self, raw: bytes, *, embedded: bool) -> T:
        """Parse raw dataset bytes.

        Raises:
            Exception: Any parse or validation error; the caller decides
                      whether to fall back or to fail
        """

    async def load(self) -> T:
        """Return the dataset, initializing it on first use.

        Returns:
            The parsed dataset

        Raises:
            DataUnavailableError: If neither the live nor the embedded dataset
                                 could be parsed
        """
        if self._task is None:
            self._task = asyncio.ensure_future(self._initialize())
        # A cancelled caller must not cancel the initialization other
        # callers are waiting on.
        return await asyncio.shield(self._task)

    async def refresh(self) -> T:
        """Discard the memoized outcome and load again.

        Nothing calls this implicitly; long-lived servers may call it to pick
        up newer live data after an embedded fallback.
        """
        self._task = None
        return await self.load()

    @property
    def loaded(self) -> bool:
        return self._task is not None and self._task.done()

    async def _initialize(self) -> T:
        with self._obs_manager.trace_operation("load_dataset", source=self.source_name) as span:
            if self.config.http_client.offline:
                self._logger.debug("Offline mode, using embedded data", source=self.source_name)
            else:
                try:
                    raw = await self.fetch_live()
                    dataset = self.parse(raw, embedded=False)
                    self._logger.debug(
                        "Loaded live data",
                        source=self.source_name,
                        url=self.url,
                        size=len(raw),
                    )
                    if span:
                        span.set_attribute("embedded", False)
                    return dataset
                except Exception as e:
                    self._logger.warning(
                        "Failed to load live data, using embedded data",
                        source=self.source_name,
                        url=self.url,
                        error_type=type(e).__name__,
                        error_message=str(e),
                    )

            if span:
                span.set_attribute("embedded", True)
            return self._load_embedded()

    def _load_embedded(self) -> T:
        raw = self.embedded_bytes()
        if not raw:
            raise DataUnavailableError(f"embedded {self.source_name} data is empty")
        try:
            return self.parse(raw, embedded=True)
        except Exception as e:
            self._logger.error(
                "Failed to parse embedded data",
                error=e,
                source=self.source_name,
            )
            raise DataUnavailableError(
                f"failed to parse embedded {self.source_name} data: {e}"
            ) from e

    @with_retry
    async def fetch_live(self) -> bytes:
        """Download the live dataset, retrying per ``http_client`` settings."""
        return await self._download()

    async def _download(self) -> bytes:
        """Perform a single GET of ``url``.

        Raises:
            aiohttp.ClientError: On connection or read errors
            asyncio.TimeoutError: When the overall timeout elapses
            ValueError: On a non-200 response
        """
        async with (
            aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout)
            ) as session,
            session.get(self.url) as response,
        ):
            if response.status != 200:
                raise ValueError(f"unexpected HTTP status {response.status} from {self.url}")
            return await response.read()


__all__ = ["BaseLoader", "with_retry"]
