"""Translate a LoadTestConfig into an Artillery run configuration (YAML)."""
import base64
import json
import math
from typing import Any, Dict

import yaml

from core.models.load_test_config import ApiKeyAuth, BasicAuth, BearerAuth, LoadTestConfig

USER_AGENT = "Artillery Load Tester"


def _parse_body(body: str) -> Any:
    try:
        return json.loads(body)
    except ValueError:
        return body


def _auth_headers(config: LoadTestConfig) -> Dict[str, str]:
    auth = config.authentication
    if isinstance(auth, BearerAuth):
        return {"Authorization": f"Bearer {auth.token}"}
    if isinstance(auth, ApiKeyAuth):
        return {auth.api_key_header: auth.api_key}
    if isinstance(auth, BasicAuth):
        credentials = base64.b64encode(f"{auth.username}:{auth.password}".encode()).decode()
        return {"Authorization": f"Basic {credentials}"}
    return {}


def build_artillery_document(config: LoadTestConfig) -> Dict[str, Any]:
    target = config.target
    load = config.load

    default_headers = dict(target.headers)
    default_headers["User-Agent"] = USER_AGENT
    default_headers.update(_auth_headers(config))

    request: Dict[str, Any] = {"url": target.url}
    if target.body:
        request["json"] = _parse_body(target.body)
    if target.headers:
        request["headers"] = dict(target.headers)

    return {
        "config": {
            "target": target.url,
            "phases": [
                {
                    "duration": load.ramp_up_time,
                    "arrivalRate": math.ceil(load.virtual_users / (load.ramp_up_time or 1)),
                    "name": "Ramp up",
                },
                {
                    "duration": load.duration,
                    "arrivalRate": load.request_rate or math.ceil(load.virtual_users / 10),
                    "name": "Sustained load",
                },
            ],
            "timeout": config.options.timeout,
            "defaults": {"headers": default_headers},
        },
        "scenarios": [
            {
                "name": "Load test scenario",
                "weight": 100,
                "flow": [{target.method.value.lower(): request}],
            }
        ],
    }


def build_artillery_config(config: LoadTestConfig) -> str:
    """Pure formatting step: no I/O, same input gives the same text."""
    return yaml.safe_dump(
        build_artillery_document(config),
        indent=2,
        width=float("inf"),
        sort_keys=False,
        default_flow_style=False,
    )
