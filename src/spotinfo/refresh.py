"""Capture the live Spot Advisor and Spot Pricing feeds into the package assets.

Each feed is downloaded, parsed with its loader and only written when it
parses, so a broken download never replaces a working embedded copy. The
pricing capture is stored without its JSONP wrapper.
"""

import asyncio
import sys
from pathlib import Path
from typing import Any

import click

from spotinfo import assets
from spotinfo.base import BaseLoader
from spotinfo.config import HttpClientConfig, SpotinfoConfig
from spotinfo.loaders import AdvisorLoader, PricingLoader
from spotinfo.loaders.pricing import strip_jsonp
from spotinfo.observability import get_observability_manager

ASSETS_DIR = Path(assets.__file__).parent


async def capture(loader: BaseLoader[Any]) -> bytes:
    """Download one feed and return the bytes to embed.

    Raises:
        Exception: Download or parse errors of the feed
    """
    raw = await loader.fetch_live()
    loader.parse(raw, embedded=True)
    if isinstance(loader, PricingLoader):
        return strip_jsonp(raw.decode("utf-8")).encode("utf-8")
    return raw


async def capture_all(config: SpotinfoConfig) -> dict[str, bytes]:
    captures = await asyncio.gather(
        capture(AdvisorLoader(config)), capture(PricingLoader(config))
    )
    return dict(zip((assets.ADVISOR_ASSET, assets.PRICING_ASSET), captures, strict=True))


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False, writable=True, path_type=Path),
    default=ASSETS_DIR,
    show_default=True,
    help="Directory receiving advisor.json and pricing.json",
)
@click.option("--timeout", type=click.FloatRange(min=1, max=300), default=60.0, show_default=True)
@click.option("--retries", type=click.IntRange(min=0, max=10), default=3, show_default=True)
def main(output_dir: Path, timeout: float, retries: int) -> None:
    """Refresh the embedded datasets from the live AWS feeds."""
    config = SpotinfoConfig(http_client=HttpClientConfig(timeout=timeout, max_retries=retries))
    logger = get_observability_manager(config.observability).get_logger("spotinfo.refresh")

    try:
        captures = asyncio.run(capture_all(config))
    except Exception as e:
        logger.error("failed to capture the live feeds", error=e)
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    output_dir.mkdir(parents=True, exist_ok=True)
    for name, body in captures.items():
        path = output_dir / name
        path.write_bytes(body)
        logger.info("wrote embedded dataset", path=str(path), size=len(body))
        click.echo(f"{path} ({len(body)} bytes)")


if __name__ == "__main__":
    main()
