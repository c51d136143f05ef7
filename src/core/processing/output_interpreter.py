"""
Best-effort interpretation of load-generator output.

The generator's text format is not a stable contract, so nothing here is a
strict parser: a line is either recognized as carrying metric values, or it
is reported as a plain log line. Nothing in this module raises on bad input.
"""
import json
import logging
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from core.models.events import LogLevel, OutputChannel

logger = logging.getLogger(__name__)

# "http.request_rate: ........... 12/sec", "  p95: ...... 120.3"
# Segments after the first dot may hold spaces: "vusers.created_by_name.Load test scenario: ... 120"
KEY = r"[A-Za-z_][\w\-]*(?:\.[\w\-/]+(?: [\w\-/]+)*)*"
METRIC_LINE = re.compile(rf"^(?P<indent>\s*)(?P<key>{KEY}):\s*(?:\.{{2,}}\s*)?(?P<value>\S.*?)\s*$")
# "http.response_time:" opens a block of indented child metrics
SECTION_HEADER = re.compile(rf"^\s*(?P<key>{KEY}):\s*$")
NUMBER = re.compile(r"^(?P<number>[-+]?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)\s*(?:/sec|ms|s|%)?$")
SEPARATOR = re.compile(r"^[-=_*\s]+$")

SUMMARY_MARKER = "Summary report"
PERIOD_MARKER = "Metrics for period"


@dataclass(frozen=True)
class MetricsReading:
    values: Dict[str, float]
    scope: str


@dataclass(frozen=True)
class LogReading:
    message: str
    level: LogLevel


Reading = Union[MetricsReading, LogReading]


def parse_number(text: str) -> Optional[float]:
    match = NUMBER.match(text.strip())
    if not match:
        return None
    value = float(match.group("number"))
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def flatten_numbers(data: Any, prefix: str = "") -> Dict[str, float]:
    """Collect numeric leaves of a JSON document as dotted keys."""
    values: Dict[str, float] = {}
    if isinstance(data, dict):
        for key, item in data.items():
            name = f"{prefix}.{key}" if prefix else str(key)
            values.update(flatten_numbers(item, name))
    elif isinstance(data, (int, float)) and not isinstance(data, bool):
        if not (math.isnan(data) or math.isinf(data)):
            values[prefix] = float(data)
    return values


class OutputInterpreter:
    """
    Turns the lines of one output channel into readings.

    One instance per channel: it remembers the open section header and
    whether the generator is printing a period report or the final summary.
    """

    def __init__(self, channel: OutputChannel = OutputChannel.PRIMARY):
        self.channel = channel
        self.scope = "period"
        self._section: Optional[str] = None

    def interpret(self, line: str) -> Optional[Reading]:
        """Interpret one line. Returns None for lines that carry nothing (blank, separators)."""
        text = line.rstrip("\r\n")
        if not text.strip() or SEPARATOR.match(text):
            return None

        if self.channel is OutputChannel.DIAGNOSTIC:
            return LogReading(message=text.strip(), level=LogLevel.ERROR)

        stripped = text.strip()
        if stripped.startswith(SUMMARY_MARKER):
            self.scope = "summary"
            self._section = None
            return LogReading(message=stripped, level=LogLevel.INFO)
        if stripped.startswith(PERIOD_MARKER):
            self.scope = "period"
            self._section = None
            return LogReading(message=stripped, level=LogLevel.INFO)

        if stripped.startswith("{"):
            return self._interpret_json(stripped)

        header = SECTION_HEADER.match(text)
        if header:
            if text[0].isspace() and self._section:
                self._section = f"{self._section}.{header.group('key')}"
            else:
                self._section = header.group("key")
            return None

        match = METRIC_LINE.match(text)
        if match:
            return self._interpret_metric(match, stripped)

        self._section = None
        return LogReading(message=stripped, level=LogLevel.INFO)

    def _interpret_metric(self, match: re.Match, stripped: str) -> Reading:
        key = match.group("key")
        indented = bool(match.group("indent"))
        if indented and self._section:
            key = f"{self._section}.{key}"
        elif not indented:
            self._section = None

        value = parse_number(match.group("value"))
        if value is None or "." not in key:
            # Looks like "key: value" but is not a metric we can use
            logger.debug(f"Unrecognized output line kept as log: {stripped!r}")
            return LogReading(message=stripped, level=LogLevel.INFO)
        return MetricsReading(values={key: value}, scope=self.scope)

    def _interpret_json(self, stripped: str) -> Reading:
        try:
            data = json.loads(stripped)
        except ValueError:
            return LogReading(message=stripped, level=LogLevel.INFO)
        values = flatten_numbers(data)
        if not values:
            return LogReading(message=stripped, level=LogLevel.INFO)
        return MetricsReading(values=values, scope=self.scope)


def load_report_summary(report_path: Path) -> Dict[str, float]:
    """
    Read the aggregate section of a generator JSON report.

    Counters and rates are kept under their own names, summaries are
    flattened ("http.response_time.p95"). Returns an empty dict if the report
    is missing or unreadable.
    """
    if not report_path.exists():
        return {}
    try:
        with open(report_path, "r", encoding="utf-8") as f:
            report = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Could not read generator report {report_path}: {e}")
        return {}

    aggregate = report.get("aggregate") if isinstance(report, dict) else None
    if not isinstance(aggregate, dict):
        return {}

    summary: Dict[str, float] = {}
    for section in ("counters", "rates", "summaries"):
        summary.update(flatten_numbers(aggregate.get(section, {})))
    return summary
