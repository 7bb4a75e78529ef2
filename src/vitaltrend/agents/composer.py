"""
Output Composer

Renders the final answer of a session:
- `metrics` route: fixed-column table of the most recent raw observations
- other routes: deterministic coverage/flags/latest-values summary,
  optionally preceded by a narrative from the text-generation collaborator

The deterministic summary is always produced and never empty; narrative and
chart collaborators can only add to it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable
import base64
import json

import structlog

from vitaltrend.agents.router import missing_for_fetch
from vitaltrend.llm.client import BaseLLMClient, LLMClient
from vitaltrend.models.observations import Trends
from vitaltrend.models.params import Params
from vitaltrend.models.results import Failure, Success
from vitaltrend.models.state import Route
from vitaltrend.models.timestamps import to_iso_instant
from vitaltrend.trends.flags import fmt
from vitaltrend.trends.normalize import NormalizedObservation, normalize_records

logger = structlog.get_logger(__name__)

NO_DATA_MESSAGE = "No data: no numeric vital-sign observations were found for this request."

MAX_ROWS_PER_CODE = 5
MAX_TABLE_ROWS = 25
TABLE_COLUMNS = ("Timestamp", "Code", "Display", "Value", "Unit", "Status", "Category", "ID")

# Points per series sent to the narrative collaborator
NARRATIVE_POINTS = 20

NARRATIVE_SYSTEM_PROMPT = """You summarize vital-sign trends for a clinician.

Rules:
- Use only the numbers in the provided JSON; never invent values, dates or identifiers.
- Describe direction and variability of each series in one or two sentences.
- Mention every flag with "suggest review" language. Do not diagnose.
- Plain text, at most 120 words."""


@dataclass
class Chart:
    """A rendered chart image."""
    kind: str
    data: bytes
    caption: str

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "bytes": base64.b64encode(self.data).decode("ascii"),
            "caption": self.caption,
        }


class ChartRenderer(ABC):
    """Chart rendering collaborator."""

    @abstractmethod
    async def render(self, trends: Trends) -> Chart:
        """Render trends to an image."""
        pass


@dataclass
class ComposedOutput:
    summary: str
    chart: Chart | None = None


def _text(value: Any) -> str:
    """Display text for loosely typed record fields."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return _text(value[0]) if value else ""
    if isinstance(value, dict):
        codings = value.get("coding")
        if isinstance(codings, list) and codings and isinstance(codings[0], dict):
            return str(codings[0].get("code") or codings[0].get("display") or "")
        return str(value.get("code") or value.get("text") or "")
    return str(value)


def _cell(value: str) -> str:
    return value.replace("|", "\\|").replace("\n", " ")


class OutputComposer:
    """Deterministic rendering with optional narrative and chart enrichment."""

    def __init__(
        self,
        llm_client: BaseLLMClient | LLMClient | None = None,
        narrative_enabled: bool = True,
        chart_renderer: ChartRenderer | None = None,
    ):
        self.llm = llm_client
        self.narrative_enabled = narrative_enabled
        self.chart_renderer = chart_renderer

    # =========================================================================
    # Metrics table
    # =========================================================================

    def metrics_rows(
        self,
        entries: Iterable[Any],
        codes: Iterable[str] | None = None,
    ) -> list[NormalizedObservation]:
        """
        Most recent rows per code, capped overall.

        Newest first, ties by code; at most 5 rows per code, 25 in total.
        """
        ordered = sorted(
            normalize_records(entries, codes),
            key=lambda obs: (-obs.timestamp.timestamp(), obs.code),
        )
        per_code: dict[str, int] = {}
        rows = []
        for obs in ordered:
            if per_code.get(obs.code, 0) >= MAX_ROWS_PER_CODE:
                continue
            per_code[obs.code] = per_code.get(obs.code, 0) + 1
            rows.append(obs)
        return rows[:MAX_TABLE_ROWS]

    def metrics_table(
        self,
        entries: Iterable[Any],
        codes: Iterable[str] | None = None,
    ) -> str:
        rows = self.metrics_rows(entries, codes)
        if not rows:
            return NO_DATA_MESSAGE

        lines = [
            "| " + " | ".join(TABLE_COLUMNS) + " |",
            "|" + "---|" * len(TABLE_COLUMNS),
        ]
        for obs in rows:
            record = obs.record
            cells = (
                to_iso_instant(obs.timestamp),
                obs.code,
                obs.display or "",
                fmt(obs.value),
                obs.unit or "",
                _text(record.status),
                _text(record.category),
                _text(record.id),
            )
            lines.append("| " + " | ".join(_cell(c) for c in cells) + " |")
        return "\n".join(lines)

    # =========================================================================
    # Trend summary
    # =========================================================================

    def trend_summary(
        self,
        trends: Trends | None,
        route: Route | None = None,
        params: Params | None = None,
    ) -> str:
        """Coverage, one line per flag, one latest-value line per series."""
        if trends is None or trends.is_empty:
            message = NO_DATA_MESSAGE
            if route == Route.UNKNOWN and params is not None:
                missing = missing_for_fetch(params)
                if missing:
                    message += " To retrieve data, provide: " + ", ".join(missing) + "."
            return message

        lines = [
            f"Coverage: {trends.point_count} points across {len(trends.series)} codes "
            f"({trends.fetched_count} records retrieved)."
        ]

        if trends.flags:
            lines.append("Flags (advisory, suggest review):")
            for flag in trends.flags:
                lines.append(f"- [{flag.severity.value.upper()}] {flag.rule}: {flag.evidence}")
        else:
            lines.append("Flags: none raised.")

        lines.append("Latest values:")
        for series, stats in zip(trends.series, trends.stats):
            label = series.display or series.code
            unit = f" {series.unit}" if series.unit else ""
            lines.append(
                f"- {label}: {fmt(stats.latest_value)}{unit} "
                f"at {to_iso_instant(stats.latest_at)}"
            )
        return "\n".join(lines)

    # =========================================================================
    # Collaborators
    # =========================================================================

    async def narrative(self, trends: Trends) -> Success[str] | Failure:
        if self.llm is None:
            return Failure(reason="no text-generation client configured")

        payload = trends.to_dict()
        for series in payload["series"]:
            series["points"] = series["points"][-NARRATIVE_POINTS:]
        try:
            text = await self.llm.generate(
                prompt=json.dumps(payload, indent=2),
                system_prompt=NARRATIVE_SYSTEM_PROMPT,
            )
        except Exception as e:
            return Failure(reason=f"{type(e).__name__}: {e}", error=e)
        if not isinstance(text, str) or not text.strip():
            return Failure(reason="empty narrative")
        return Success(text.strip())

    async def chart(self, trends: Trends) -> Success[Chart] | Failure:
        if self.chart_renderer is None:
            return Failure(reason="no chart renderer configured")
        try:
            return Success(await self.chart_renderer.render(trends))
        except Exception as e:
            return Failure(reason=f"{type(e).__name__}: {e}", error=e)

    async def compose(
        self,
        route: Route,
        trends: Trends | None,
        entries: Iterable[Any] = (),
        params: Params | None = None,
    ) -> ComposedOutput:
        if route == Route.METRICS:
            codes = params.codes if params else None
            return ComposedOutput(summary=self.metrics_table(entries, codes))

        summary = self.trend_summary(trends, route=route, params=params)
        if trends is None or trends.is_empty:
            return ComposedOutput(summary=summary)

        if self.narrative_enabled:
            result = await self.narrative(trends)
            if isinstance(result, Success):
                summary = f"{result.value}\n\n{summary}"
            else:
                logger.warning("Narrative unavailable, using deterministic summary",
                               reason=result.reason)

        chart = None
        if self.chart_renderer is not None:
            result = await self.chart(trends)
            if isinstance(result, Success):
                chart = result.value
            else:
                logger.warning("Chart rendering failed", reason=result.reason)

        return ComposedOutput(summary=summary, chart=chart)
