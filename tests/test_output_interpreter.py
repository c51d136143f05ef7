import json

import pytest

from core.models.events import LogLevel, OutputChannel
from core.processing.output_interpreter import (
    LogReading,
    MetricsReading,
    OutputInterpreter,
    load_report_summary,
    parse_number,
)


@pytest.fixture
def interpreter():
    return OutputInterpreter(OutputChannel.PRIMARY)


class TestMetricLines:

    @pytest.mark.parametrize("line, key, value", [
        ("http.request_rate: ......................... 12/sec\n", "http.request_rate", 12.0),
        ("http.requests: ............................. 120", "http.requests", 120.0),
        ("http.codes.200: ............................ 118", "http.codes.200", 118.0),
        ("vusers.session_length.mean: ................ 52.3ms", "vusers.session_length.mean", 52.3),
        ("vusers.created_by_name.Load test scenario: .... 120", "vusers.created_by_name.Load test scenario", 120.0),
    ])
    def test_dotted_metric(self, interpreter, line, key, value):
        reading = interpreter.interpret(line)
        assert reading == MetricsReading(values={key: value}, scope="period")

    def test_section_header_scopes_indented_metrics(self, interpreter):
        assert interpreter.interpret("http.response_time:") is None
        assert interpreter.interpret("  min: ...................................... 10") == MetricsReading(
            values={"http.response_time.min": 10.0}, scope="period"
        )
        assert interpreter.interpret("  p95: ...................................... 120.3") == MetricsReading(
            values={"http.response_time.p95": 120.3}, scope="period"
        )
        # A top-level line closes the section
        assert interpreter.interpret("vusers.active: ........ 5") == MetricsReading(
            values={"vusers.active": 5.0}, scope="period"
        )

    def test_summary_marker_switches_scope(self, interpreter):
        reading = interpreter.interpret("Summary report @ 10:15:02(+0000)")
        assert reading == LogReading(message="Summary report @ 10:15:02(+0000)", level=LogLevel.INFO)
        assert interpreter.interpret("http.requests: ..... 600").scope == "summary"

        interpreter.interpret("Metrics for period to: 10:15:10(+0000)")
        assert interpreter.interpret("http.requests: ..... 10").scope == "period"

    def test_json_line_with_numbers(self, interpreter):
        line = json.dumps({"http": {"requests": 5, "codes": {"200": 5}}, "label": "x"})
        reading = interpreter.interpret(line)
        assert reading == MetricsReading(values={"http.requests": 5.0, "http.codes.200": 5.0}, scope="period")


class TestNonMetricLines:

    @pytest.mark.parametrize("line", ["", "\n", "   ", "--------------------------------", "=====", "***"])
    def test_blank_and_separator_lines_produce_nothing(self, interpreter, line):
        assert interpreter.interpret(line) is None

    @pytest.mark.parametrize("line", [
        "http.requests: ....... lots",
        "Phase: 1",
        "Started phase 0, duration: 60s @ 10:00:00",
        "All VUs finished. Total time: 1 minute, 2 seconds",
        "http.codes.200: nan",
        "{not json",
        '{"label": "no numbers"}',
    ])
    def test_unrecognized_lines_become_info_logs(self, interpreter, line):
        reading = interpreter.interpret(line)
        assert reading == LogReading(message=line.strip(), level=LogLevel.INFO)

    def test_diagnostic_channel_is_always_error_log(self):
        interpreter = OutputInterpreter(OutputChannel.DIAGNOSTIC)
        reading = interpreter.interpret("http.requests: ..... 120\n")
        assert reading == LogReading(message="http.requests: ..... 120", level=LogLevel.ERROR)
        assert interpreter.interpret("\n") is None

    def test_parse_number(self):
        assert parse_number("12/sec") == 12.0
        assert parse_number(" 1.5e3 ") == 1500.0
        assert parse_number("99%") == 99.0
        assert parse_number("inf") is None
        assert parse_number("12 apples") is None


class TestReportSummary:

    def test_missing_report(self, tmp_path):
        assert load_report_summary(tmp_path / "missing.json") == {}

    def test_corrupt_report(self, tmp_path):
        path = tmp_path / "report.json"
        path.write_text("{truncated")
        assert load_report_summary(path) == {}

    def test_aggregate_is_flattened(self, tmp_path):
        path = tmp_path / "report.json"
        path.write_text(json.dumps({
            "aggregate": {
                "counters": {"http.requests": 600, "vusers.failed": 0},
                "rates": {"http.request_rate": 10},
                "summaries": {"http.response_time": {"p95": 120.3, "max": 300}},
            },
            "intermediate": [],
        }))
        assert load_report_summary(path) == {
            "http.requests": 600.0,
            "vusers.failed": 0.0,
            "http.request_rate": 10.0,
            "http.response_time.p95": 120.3,
            "http.response_time.max": 300.0,
        }
