"""MCP server exposing the spotinfo tools.

The server is a FastMCP application with two tools, ``find_spot_instances``
and ``list_spot_regions``, served over stdio or SSE. All tool calls share one
``AdviceEngine`` and therefore its datasets and score cache.
"""

from typing import Annotated, Any

from mcp.server.fastmcp import FastMCP
from pydantic import Field

from spotinfo import __version__, tools
from spotinfo.config import SpotinfoConfig
from spotinfo.engine import AdviceEngine
from spotinfo.observability import get_observability_manager

SERVER_NAME = "spotinfo"

SERVER_INSTRUCTIONS = """
# spotinfo MCP Server

Explore AWS EC2 Spot Instances: savings over on-demand, interruption frequency,
hourly spot prices and optional AWS Spot Placement Scores.

## Tools
- **find_spot_instances**: search spot options by region, instance type pattern,
  minimum vCPU/memory, maximum price and maximum interruption rate
- **list_spot_regions**: list the regions with spot data

## Notes
- Prices are USD per hour for Linux instances
- Interruption rates are the band published by the AWS Spot Instance Advisor
- Placement scores (1-10) need AWS credentials with ec2:GetSpotPlacementScores
"""

FIND_DESCRIPTION = (
    "Search for AWS EC2 Spot Instance options based on requirements. "
    "Returns pricing, savings, and interruption data."
)
LIST_DESCRIPTION = "List all AWS regions where EC2 Spot Instances are available"


def create_server(engine: AdviceEngine, config: SpotinfoConfig | None = None) -> FastMCP:
    """Build the FastMCP application bound to ``engine``.

    Args:
        engine: Shared advice engine
        config: Configuration (defaults to the engine's)

    Returns:
        Configured FastMCP server with both tools registered
    """
    config = config or engine.config
    server = FastMCP(
        name=SERVER_NAME,
        instructions=SERVER_INSTRUCTIONS,
        host=config.mcp.host,
        port=config.mcp.port,
    )

    async def find_spot_instances(
        regions: Annotated[
            list[str] | None,
            Field(
                description="AWS regions to search (e.g., ['us-east-1', 'eu-west-1']). "
                "Use ['all'] or omit to search all regions"
            ),
        ] = None,
        instance_types: Annotated[
            str,
            Field(
                description="Instance type pattern - exact type (e.g., 'm5.large') "
                "or pattern (e.g., 't3.*', 'm5.*')"
            ),
        ] = "",
        min_vcpu: Annotated[int, Field(description="Minimum number of vCPUs required")] = 0,
        min_memory_gb: Annotated[int, Field(description="Minimum memory in gigabytes")] = 0,
        max_price_per_hour: Annotated[
            float, Field(description="Maximum spot price per hour in USD")
        ] = 0,
        max_interruption_rate: Annotated[
            float,
            Field(description="Maximum acceptable interruption rate percentage (0-100)"),
        ] = 100,
        sort_by: Annotated[
            str,
            Field(
                description="Sort results by: 'price' (cheapest first), 'reliability' "
                "(lowest interruption first), 'savings' (highest savings first), "
                "'score' (highest score first)"
            ),
        ] = "reliability",
        limit: Annotated[
            int, Field(description="Maximum number of results to return (max 50)")
        ] = tools.DEFAULT_LIMIT,
        with_score: Annotated[
            bool, Field(description="Include AWS spot placement scores (experimental)")
        ] = False,
        min_score: Annotated[
            int, Field(description="Filter: minimum spot placement score (1-10)", ge=0, le=10)
        ] = 0,
        az: Annotated[
            bool,
            Field(description="Request AZ-level scores instead of region-level"),
        ] = False,
        score_timeout: Annotated[
            int,
            Field(description="Timeout for score enrichment in seconds", ge=1, le=300),
        ] = int(config.scores.timeout),
    ) -> dict[str, Any]:
        return await tools.find_spot_instances(
            engine,
            {
                "regions": regions,
                "instance_types": instance_types,
                "min_vcpu": min_vcpu,
                "min_memory_gb": min_memory_gb,
                "max_price_per_hour": max_price_per_hour,
                "max_interruption_rate": max_interruption_rate,
                "sort_by": sort_by,
                "limit": limit,
                "with_score": with_score,
                "min_score": min_score,
                "az": az,
                "score_timeout": score_timeout,
            },
        )

    async def list_spot_regions(
        include_names: Annotated[
            bool,
            Field(description="Include human-readable region names"),
        ] = True,
    ) -> dict[str, Any]:
        return await tools.list_spot_regions(engine, {"include_names": include_names})

    server.tool("find_spot_instances", description=FIND_DESCRIPTION)(find_spot_instances)
    server.tool("list_spot_regions", description=LIST_DESCRIPTION)(list_spot_regions)
    return server


async def serve(engine: AdviceEngine, config: SpotinfoConfig | None = None) -> None:
    """Run the MCP server until the transport closes or the task is cancelled."""
    config = config or engine.config
    logger = get_observability_manager(config.observability).get_logger(__name__)
    server = create_server(engine, config)

    logger.info(
        "Starting MCP server",
        version=__version__,
        transport=config.mcp.transport,
        port=config.mcp.port,
    )
    if config.mcp.transport == "sse":
        await server.run_sse_async()
    else:
        await server.run_stdio_async()
    logger.info("MCP server stopped")


__all__ = ["SERVER_NAME", "create_server", "serve"]
