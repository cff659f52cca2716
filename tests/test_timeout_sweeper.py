"""
Tests for the timeout sweeper CLI.
"""

import httpx
import respx

from invoice_workflows.timeout_sweeper import main, sweep_once

BASE_URL = "http://api.test"
CHECK_URL = f"{BASE_URL}/approvals/timeouts/check"


@respx.mock
def test_sweep_returns_escalated_ids():
    respx.post(CHECK_URL).mock(
        return_value=httpx.Response(200, json={"data": {"escalated": ["req-1", "req-2"], "count": 2}})
    )
    assert sweep_once(BASE_URL + "/") == ["req-1", "req-2"]


@respx.mock
def test_sweep_server_error_returns_empty():
    respx.post(CHECK_URL).mock(return_value=httpx.Response(500))
    assert sweep_once(BASE_URL) == []


@respx.mock
def test_sweep_connection_error_returns_empty():
    respx.post(CHECK_URL).mock(side_effect=httpx.ConnectError("refused"))
    assert sweep_once(BASE_URL) == []


@respx.mock
def test_main_once():
    route = respx.post(CHECK_URL).mock(
        return_value=httpx.Response(200, json={"data": {"escalated": [], "count": 0}})
    )
    main(["--base-url", BASE_URL, "--once"])
    assert route.call_count == 1
