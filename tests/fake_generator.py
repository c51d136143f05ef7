"""Stand-in for the load generator, driven by FAKE_SCENARIO.

Usage: fake_generator.py <report_path> <config_path>
"""
import json
import os
import signal
import sys
import time


def write_report(report_path):
    report = {
        "aggregate": {
            "counters": {"http.requests": 120},
            "rates": {"http.request_rate": 12},
            "summaries": {"http.response_time": {"p95": 123.4}},
        }
    }
    with open(report_path, "w") as f:
        json.dump(report, f)


def main():
    scenario = os.environ.get("FAKE_SCENARIO", "metrics")
    report_path, config_path = sys.argv[1], sys.argv[2]

    if not os.path.exists(config_path):
        print(f"missing config {config_path}", file=sys.stderr, flush=True)
        return 4

    if scenario == "metrics":
        # Leave time for late subscribers
        time.sleep(0.3)
        print("", flush=True)
        print("--------------------------------------", flush=True)
        print("http.requests: ................... 120", flush=True)
        print("http.request_rate: ............... 12/sec", flush=True)
        print("vusers.active: ................... 5", flush=True)
        print("http.requests: ....... lots", flush=True)
        write_report(report_path)
        return 0

    if scenario == "long_line":
        print("x" * 200_000, flush=True)
        print("after long line", flush=True)
        return 0

    if scenario == "fail":
        print("boom", file=sys.stderr, flush=True)
        return 3

    if scenario == "hang":
        signal.signal(signal.SIGTERM, signal.SIG_IGN)

    # "hang" and "sleep"
    print("ready", flush=True)
    time.sleep(30)
    return 0


if __name__ == "__main__":
    sys.exit(main())
