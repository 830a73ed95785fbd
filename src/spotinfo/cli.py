"""Command-line interface for exploring AWS EC2 Spot instances."""

import asyncio
import os
import sys
from pathlib import Path

import click

from spotinfo import __version__
from spotinfo.config import SpotinfoConfig
from spotinfo.engine import AdviceEngine
from spotinfo.errors import OperationCancelledError, SpotinfoError, as_spotinfo_error
from spotinfo.mcp_server import serve
from spotinfo.models import Advice, Query, SortBy
from spotinfo.observability import StructuredLogger, get_observability_manager
from spotinfo.output import OUTPUT_FORMATS, render, show_region_column

MCP_MODE_ENV = "SPOTINFO_MCP_MODE"
MCP_MODE_VALUE = "mcp"

EXIT_ERROR = 1
EXIT_CANCELLED = 130

SORT_CHOICES: dict[str, SortBy] = {
    "interruption": SortBy.RANGE,
    "type": SortBy.INSTANCE,
    "savings": SortBy.SAVINGS,
    "price": SortBy.PRICE,
    "region": SortBy.REGION,
    "score": SortBy.SCORE,
}


def is_mcp_mode(mcp_flag: bool) -> bool:
    """MCP mode is selected by ``--mcp`` or ``SPOTINFO_MCP_MODE=mcp``."""
    return mcp_flag or os.environ.get(MCP_MODE_ENV, "").strip().lower() == MCP_MODE_VALUE


def split_regions(values: tuple[str, ...]) -> list[str]:
    """Flatten repeated and comma-separated ``--region`` values, keeping order."""
    regions: list[str] = []
    for value in values:
        for region in value.split(","):
            region = region.strip()
            if region and region not in regions:
                regions.append(region)
    return regions or ["us-east-1"]


def setup_logging(
    config: SpotinfoConfig, debug: bool, quiet: bool, json_log: bool
) -> StructuredLogger:
    """Apply the logging flags and return the CLI logger."""
    level = config.observability.log_level
    if debug:
        level = "DEBUG"
    elif quiet:
        level = "ERROR"
    config.observability.log_level = level
    config.observability.json_log = json_log or config.observability.json_log

    obs = get_observability_manager(config.observability)
    obs.set_level(level)
    obs.set_json_log(config.observability.json_log)
    return obs.get_logger("spotinfo.cli")


def fail(logger: StructuredLogger, error: SpotinfoError, exit_code: int = EXIT_ERROR) -> None:
    logger.error(
        "failed to get spot savings",
        error=error.__cause__,
        error_kind=error.kind.value,
        error_message=str(error),
    )
    click.echo(f"Error: {error}", err=True)
    sys.exit(exit_code)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, prog_name="spotinfo")
@click.option("--mcp", "mcp_flag", is_flag=True, help="Run as MCP server instead of CLI")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--quiet", is_flag=True, help="Quiet mode (errors only)")
@click.option("--json-log", is_flag=True, help="Output logs in JSON format")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to a YAML configuration file",
)
@click.option("--type", "instance_type", default="", help="EC2 instance type (regular expression)")
@click.option(
    "--os", "instance_os", default="linux", help="Instance operating system (windows/linux)"
)
@click.option(
    "--region",
    "regions",
    multiple=True,
    default=("us-east-1",),
    show_default=True,
    help='One or more AWS regions, use "all" for all AWS regions',
)
@click.option(
    "--output",
    "output_format",
    type=click.Choice(OUTPUT_FORMATS),
    default="table",
    show_default=True,
    help="Output format",
)
@click.option("--cpu", type=click.IntRange(min=0), default=0, help="Filter: minimal vCPU cores")
@click.option("--memory", type=click.IntRange(min=0), default=0, help="Filter: minimal memory GiB")
@click.option(
    "--price", type=click.FloatRange(min=0), default=0.0, help="Filter: maximum price per hour"
)
@click.option(
    "--sort",
    "sort_by",
    type=click.Choice(list(SORT_CHOICES)),
    default="interruption",
    show_default=True,
    help="Sort results by",
)
@click.option(
    "--order",
    type=click.Choice(["asc", "desc"]),
    default="asc",
    show_default=True,
    help="Sort order",
)
@click.option("--with-score", is_flag=True, help="Include AWS spot placement scores")
@click.option(
    "--min-score",
    type=click.IntRange(0, 10),
    default=0,
    help="Filter: minimum spot placement score (1-10)",
)
@click.option(
    "--az", is_flag=True, help="Request AZ-level scores instead of region-level (with --with-score)"
)
@click.option(
    "--score-timeout",
    type=click.IntRange(1, 300),
    default=None,
    help="Timeout for score enrichment in seconds [default: 30]",
)
def main(
    mcp_flag: bool,
    debug: bool,
    quiet: bool,
    json_log: bool,
    config_path: Path | None,
    instance_type: str,
    instance_os: str,
    regions: tuple[str, ...],
    output_format: str,
    cpu: int,
    memory: int,
    price: float,
    sort_by: str,
    order: str,
    with_score: bool,
    min_score: int,
    az: bool,
    score_timeout: int | None,
) -> None:
    """Explore AWS EC2 Spot instances.

    Example:
        spotinfo --type 'm5\\.' --region us-east-1 --region eu-west-1 --cpu 4
        spotinfo --region all --sort savings --order desc --output json
        spotinfo --mcp
    """
    try:
        config = SpotinfoConfig.load(config_path)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--config") from e

    logger = setup_logging(config, debug, quiet, json_log)
    engine = AdviceEngine.from_config(config)

    if is_mcp_mode(mcp_flag):
        try:
            asyncio.run(serve(engine, config))
        except KeyboardInterrupt:
            logger.info("MCP server interrupted")
        finally:
            engine.scores.shutdown()
        return

    region_list = split_regions(regions)
    query = Query(
        regions=region_list,
        pattern=instance_type,
        os=instance_os,
        min_cpu=cpu,
        min_ram_gb=memory,
        max_price=price,
        sort_by=SORT_CHOICES[sort_by],
        sort_desc=order == "desc",
        with_scores=with_score,
        per_az=with_score and az,
        min_score=min_score,
        score_timeout=score_timeout,
    )

    advices: list[Advice] = []
    try:
        advices = asyncio.run(engine.get_spot_savings(query))
    except SpotinfoError as e:
        fail(logger, e)
    except (KeyboardInterrupt, asyncio.CancelledError):
        fail(logger, OperationCancelledError("operation cancelled"), EXIT_CANCELLED)
    except Exception as e:
        fail(logger, as_spotinfo_error(e))
    finally:
        engine.scores.shutdown()

    click.echo(render(advices, output_format, show_region_column(region_list)), nl=False)


if __name__ == "__main__":
    main()
