from __future__ import annotations

import json

import httpx
import pytest

from httppal import cli
from httppal.loadgen.transport import HttpxTransport


@pytest.fixture
def mock_transport(monkeypatch: pytest.MonkeyPatch) -> list[httpx.Request]:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text="pong")

    def factory(max_connections: int) -> HttpxTransport:
        return HttpxTransport(client=httpx.Client(transport=httpx.MockTransport(handler)))

    monkeypatch.setattr(cli, "HttpxTransport", factory)
    return seen


def test_json_report(mock_transport: list[httpx.Request], capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(
        [
            "--url",
            "http://example.com/items/{id}",
            "--path",
            "id=9",
            "--header",
            "X-Token: abc",
            "--threads",
            "2",
            "--iterations",
            "3",
            "--json",
        ]
    )
    assert code == 0
    report = json.loads(capsys.readouterr().out)
    assert report["total_requests"] == 6
    assert report["status_codes"] == {"200": 6}
    assert report["parameters"]["thread_count"] == 2
    assert len(mock_transport) == 6
    assert mock_transport[0].url.path == "/items/9"
    assert mock_transport[0].headers["x-token"] == "abc"


def test_text_report_with_timeline(mock_transport: list[httpx.Request], capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["--url", "http://example.com", "--timeline"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("Total: 1 | Success: 100.0%")
    assert "p95_ms" in out


def test_validation_errors_exit_with_2(mock_transport: list[httpx.Request], capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["--url", "http://example.com", "--threads", "0"]) == 2
    assert "Thread count must be at least 1" in capsys.readouterr().err
    assert mock_transport == []


def test_malformed_header_is_a_usage_error(mock_transport: list[httpx.Request]) -> None:
    with pytest.raises(SystemExit):
        cli.main(["--url", "http://example.com", "--header", "novalue"])


def test_slowest_calls_are_listed(mock_transport: list[httpx.Request], capsys: pytest.CaptureFixture[str]) -> None:
    argv = ["--url", "http://example.com", "--iterations", "4", "--slowest", "2", "--progress-interval", "0.01"]
    assert cli.main(argv) == 0
    out = capsys.readouterr().out
    assert "Slowest 2 calls:" in out
    listed = [line for line in out.splitlines() if line.startswith("  #")]
    assert len(listed) == 2
    assert all(" 200 " in line for line in listed)
