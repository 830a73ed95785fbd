"""Renderers for CLI output.

Each renderer turns advice rows into the text written to stdout: ``number``,
``text``, ``json``, ``table`` (tabulate grid) and ``csv``.
"""

import csv
import json
from datetime import datetime
from io import StringIO
from typing import Any

from tabulate import tabulate

from spotinfo.models import Advice, FreshnessLevel, score_freshness

OUTPUT_FORMATS = ("number", "text", "json", "table", "csv")

REGION_COLUMN = "Region"
INSTANCE_COLUMN = "Instance Info"
VCPU_COLUMN = "vCPU"
MEMORY_COLUMN = "Memory GiB"
SAVINGS_COLUMN = "Savings over On-Demand"
INTERRUPTION_COLUMN = "Frequency of interruption"
PRICE_COLUMN = "USD/Hour"
SCORE_COLUMN = "Score"
SCORE_HEADER_AZ = "Placement Score (AZ)"
SCORE_HEADER_REGIONAL = "Placement Score (Regional)"
SCORE_HEADER_GENERIC = "Placement Score"

EXCELLENT_SCORE = 8
MODERATE_SCORE = 5
POOR_SCORE = 1


def show_region_column(regions: list[str]) -> bool:
    """Regions are printed when more than one, or all, were requested."""
    return len(regions) > 1 or regions == ["all"]


def _memory(ram_gb: float) -> str:
    return f"{ram_gb:g}"


def score_indicator(score: int) -> str:
    if score >= EXCELLENT_SCORE:
        return "🟢"
    if score >= MODERATE_SCORE:
        return "🟡"
    if score >= POOR_SCORE:
        return "🔴"
    return "❓"


def _with_freshness(value: str, fetched_at: datetime | None) -> str:
    """Mark scores older than 30 minutes with ``*``."""
    if fetched_at is not None and score_freshness(fetched_at) is FreshnessLevel.STALE:
        return value + "*"
    return value


def format_score(advice: Advice, visual: bool = False) -> str:
    """Format the score of a row: ``7``, or ``use1-az1:7,use1-az2:9`` for AZ scores."""

    def one(score: int) -> str:
        text = f"{score_indicator(score)} {score}" if visual else str(score)
        return _with_freshness(text, advice.score_fetched_at)

    if advice.region_score is not None:
        return one(advice.region_score)
    if advice.zone_scores:
        zones = sorted(advice.zone_scores.items())
        return ",".join(f"{zone}:{one(score)}" for zone, score in zones)
    return "-"


def render_number(advices: list[Advice], show_region: bool) -> str:
    if len(advices) == 1:
        return f"{advices[0].savings}\n"
    lines = []
    for advice in advices:
        prefix = f"{advice.region}/{advice.instance}" if show_region else advice.instance
        lines.append(f"{prefix}: {advice.savings}")
    return "".join(f"{line}\n" for line in lines)


def render_text(advices: list[Advice], show_region: bool) -> str:
    lines = []
    for advice in advices:
        line = (
            f"type={advice.instance}, vCPU={advice.info.cores}, "
            f"memory={_memory(advice.info.ram_gb)}GiB, saving={advice.savings}%, "
            f"interruption='{advice.band.label}', price={advice.price:.2f}"
        )
        if show_region:
            line = f"region={advice.region}, {line}"
        if advice.has_score:
            line += f", score={format_score(advice, visual=True)}"
        lines.append(line)
    return "".join(f"{line}\n" for line in lines)


def advice_to_dict(advice: Advice) -> dict[str, Any]:
    """JSON document of one row; score fields only when present."""
    data: dict[str, Any] = {
        "region": advice.region,
        "instance": advice.instance,
        "range": advice.band.model_dump(),
        "savings": advice.savings,
        "info": advice.info.model_dump(),
        "price": advice.price,
    }
    if advice.region_score is not None:
        data["region_score"] = advice.region_score
    if advice.zone_scores:
        data["zone_scores"] = dict(advice.zone_scores)
    if advice.score_fetched_at is not None:
        data["score_fetched_at"] = advice.score_fetched_at.isoformat()
    return data


def render_json(advices: list[Advice]) -> str:
    return json.dumps([advice_to_dict(a) for a in advices], indent=2, ensure_ascii=False) + "\n"


def expand_zones(advices: list[Advice]) -> list[Advice]:
    """Split rows with several AZ scores into one row per AZ."""
    expanded: list[Advice] = []
    for advice in advices:
        if not advice.zone_scores or len(advice.zone_scores) <= 1:
            expanded.append(advice)
            continue
        for zone, score in sorted(advice.zone_scores.items()):
            expanded.append(
                advice.model_copy(update={"zone_scores": {zone: score}, "region_score": None})
            )
    return expanded


def score_header(advices: list[Advice]) -> str | None:
    """Return the score column header, or None when no row is scored."""
    regional = any(a.region_score is not None for a in advices)
    zonal = any(a.zone_scores for a in advices)
    if regional and zonal:
        return SCORE_HEADER_GENERIC
    if zonal:
        return SCORE_HEADER_AZ
    if regional:
        return SCORE_HEADER_REGIONAL
    return None


def _rows(
    advices: list[Advice], show_region: bool, for_csv: bool
) -> tuple[list[str], list[list[Any]]]:
    advices = expand_zones(advices)
    header_for_score = score_header(advices)

    headers = [
        INSTANCE_COLUMN,
        VCPU_COLUMN,
        MEMORY_COLUMN,
        SAVINGS_COLUMN,
        INTERRUPTION_COLUMN,
        PRICE_COLUMN,
    ]
    if header_for_score:
        headers.append(header_for_score)
    if show_region:
        headers.insert(0, REGION_COLUMN)

    rows: list[list[Any]] = []
    for advice in advices:
        row: list[Any] = [
            advice.instance,
            advice.info.cores,
            _memory(advice.info.ram_gb),
            advice.savings if for_csv else f"{advice.savings}%",
            advice.band.label,
            advice.price,
        ]
        if header_for_score:
            row.append(format_score(advice, visual=not for_csv))
        if show_region:
            row.insert(0, advice.region)
        rows.append(row)
    return headers, rows


def render_table(advices: list[Advice], show_region: bool) -> str:
    headers, rows = _rows(advices, show_region, for_csv=False)
    return tabulate(rows, headers=headers, tablefmt="simple_grid", disable_numparse=True) + "\n"


def render_csv(advices: list[Advice], show_region: bool) -> str:
    headers, rows = _rows(advices, show_region, for_csv=True)
    output = StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(headers)
    writer.writerows(rows)
    return output.getvalue()


def render(advices: list[Advice], output_format: str, show_region: bool) -> str:
    """Render rows in ``output_format``; unknown formats fall back to ``number``."""
    if output_format == "text":
        return render_text(advices, show_region)
    if output_format == "json":
        return render_json(advices)
    if output_format == "table":
        return render_table(advices, show_region)
    if output_format == "csv":
        return render_csv(advices, show_region)
    return render_number(advices, show_region)


__all__ = [
    "OUTPUT_FORMATS",
    "advice_to_dict",
    "expand_zones",
    "format_score",
    "render",
    "render_csv",
    "render_json",
    "render_number",
    "render_table",
    "render_text",
    "score_header",
    "score_indicator",
    "show_region_column",
]
