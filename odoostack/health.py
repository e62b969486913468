from __future__ import annotations

import re
import time

import httpx

LOG_KEYWORDS = ("error", "warning", "fatal", "critical")
_KEYWORD_RE = re.compile(r"\b(" + "|".join(LOG_KEYWORDS) + r")\b", re.IGNORECASE)


def check_health(url: str, timeout_s: float = 2.0, transport: httpx.BaseTransport | None = None) -> tuple[bool, str, float | None]:
    """Call the Odoo health endpoint.

    Expected JSON: {"status": "pass"}.
    Returns (is_healthy, message, latency_ms).
    """
    start = time.time()
    try:
        with httpx.Client(timeout=timeout_s, follow_redirects=False, transport=transport) as client:
            resp = client.get(url)
        latency_ms = round((time.time() - start) * 1000.0, 2)
        if resp.status_code != 200:
            return False, f"HTTP {resp.status_code}", latency_ms
        try:
            data = resp.json()
        except ValueError:
            return False, "Invalid JSON", latency_ms
        if isinstance(data, dict) and data.get("status") == "pass":
            return True, "Healthy", latency_ms
        return False, f"Unhealthy payload: {data!r}", latency_ms
    except (httpx.ConnectError, httpx.TimeoutException):
        latency_ms = round((time.time() - start) * 1000.0, 2)
        return False, "No response", latency_ms
    except httpx.HTTPError as e:
        latency_ms = round((time.time() - start) * 1000.0, 2)
        return False, f"Error: {type(e).__name__}: {e}", latency_ms


def scan_log(text: str) -> dict[str, list[str]]:
    """Group log lines by the error-ish keyword they contain (first match per line)."""
    hits: dict[str, list[str]] = {k: [] for k in LOG_KEYWORDS}
    for line in text.splitlines():
        m = _KEYWORD_RE.search(line)
        if m:
            hits[m.group(1).lower()].append(line.rstrip())
    return hits
