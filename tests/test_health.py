import httpx

from odoostack.health import check_health, scan_log


def test_check_health_ok():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"status": "pass"}))
    ok, msg, latency = check_health("http://odoo:8069/web/health", transport=transport)
    assert ok is True
    assert msg == "Healthy"
    assert latency is not None


def test_check_health_bad_payload_and_status():
    bad = httpx.MockTransport(lambda request: httpx.Response(200, json={"status": "fail"}))
    ok, msg, _ = check_health("http://odoo:8069/web/health", transport=bad)
    assert ok is False and msg.startswith("Unhealthy payload")

    html = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))
    assert check_health("http://odoo:8069/web/health", transport=html)[1] == "Invalid JSON"

    down = httpx.MockTransport(lambda request: httpx.Response(502))
    assert check_health("http://odoo:8069/web/health", transport=down)[:2] == (False, "HTTP 502")


def test_check_health_no_response():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    ok, msg, _ = check_health("http://odoo:8069/web/health", transport=httpx.MockTransport(refuse))
    assert ok is False
    assert msg == "No response"


def test_scan_log_matches_whole_words_case_insensitively():
    text = "\n".join(
        [
            "2024-01-01 INFO odoo: started",
            "2024-01-01 ERROR odoo.sql_db: bad query",
            "2024-01-01 WARNING odoo.modules: deprecated",
            "PANIC? no, CRITICAL: disk full",
            "errors_total=0",
            "FATAL:  role does not exist",
        ]
    )
    hits = scan_log(text)
    assert len(hits["error"]) == 1
    assert len(hits["warning"]) == 1
    assert hits["critical"] == ["PANIC? no, CRITICAL: disk full"]
    assert hits["fatal"] == ["FATAL:  role does not exist"]
