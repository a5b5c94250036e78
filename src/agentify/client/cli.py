"""CLI client for the Agentify compiler API."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import (
    Any,
    Dict,
    Optional,
    cast,
)

import httpx

from agentify.common import (
    AnsiColors,
    colored_print,
)
from agentify.config import settings

logger = logging.getLogger(__name__)

STATUS_COLORS = {
    "pending": AnsiColors.BLUE,
    "succeeded": AnsiColors.GREEN,
    "degraded": AnsiColors.YELLOW,
    "failed": AnsiColors.RED,
}


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def api_url() -> str:
    return settings.API_URL or f"http://localhost:{settings.API_PORT}"


def call_api(
    method: str,
    endpoint: str,
    data: Optional[Dict[str, Any]] = None,
    max_retries: int = 5,
    client: Optional[httpx.Client] = None,
) -> Dict[str, Any]:
    """Send a request to the API and return the JSON response, retrying while it starts up."""
    url = f"{api_url()}{endpoint}"
    owns_client = client is None
    http = client or httpx.Client(timeout=30.0)
    try:
        for attempt in range(max_retries):
            try:
                response = http.request(method, url, json=data)
            except httpx.ConnectError as e:
                if attempt == max_retries - 1:
                    raise
                retry_delay = 0.5 * (2**attempt)  # exponential backoff: 0.5s, 1s, 2s, 4s...
                logger.info(
                    "API not ready yet, retrying in %.1f seconds (attempt %d/%d): %s",
                    retry_delay,
                    attempt + 1,
                    max_retries,
                    e,
                )
                time.sleep(retry_delay)
                continue

            if response.status_code >= 400:
                detail = response.json().get("detail", response.text)
                raise httpx.HTTPStatusError(
                    f"API error {response.status_code}: {detail}",
                    request=response.request,
                    response=response,
                )
            return cast(Dict[str, Any], response.json())
        raise httpx.ConnectError(f"Failed to connect to API after {max_retries} attempts")
    finally:
        if owns_client:
            http.close()


def watch_compilation(
    request_id: str,
    poll_interval: float = 0.5,
    client: Optional[httpx.Client] = None,
) -> Dict[str, Any]:
    """Print progress events of *request_id* until it is terminal and return the final record."""
    last_sequence = -1
    while True:
        payload = call_api(
            "GET", f"/compilations/{request_id}/events?after={last_sequence}", client=client
        )
        for event in payload["events"]:
            last_sequence = event["sequence"]
            color = STATUS_COLORS.get(event["status"], AnsiColors.BLUE)
            colored_print(f"[{event['progress']:>3}%] {event['step']}: {event['message']}", color)
        if payload["status"] != "pending":
            return call_api("GET", f"/compilations/{request_id}", client=client)
        time.sleep(poll_interval)


def run_cli(config_path: Path, client: Optional[httpx.Client] = None) -> int:
    """Submit the configuration at *config_path* and follow it to completion.

    Returns a process exit code: 0 for a real build, 1 for a failure and 2 for a mock artifact.
    """
    config = json.loads(Path(config_path).read_text(encoding="utf-8"))
    try:
        submitted = call_api("POST", "/compilations", config, client=client)
        record = watch_compilation(submitted["request_id"], client=client)
    except httpx.HTTPError as e:
        colored_print(f"⚠️ {e}", AnsiColors.RED)
        return 1

    status = record["status"]
    colored_print(f"Status: {status}", STATUS_COLORS.get(status, AnsiColors.BLUE))
    if record.get("artifact_path"):
        colored_print(f"Artifact: {record['artifact_path']}", AnsiColors.GREEN)
    if record.get("error"):
        colored_print(f"Error: {record['error'].get('message')}", AnsiColors.RED)
    return {"succeeded": 0, "degraded": 2}.get(status, 1)
