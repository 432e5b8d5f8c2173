from __future__ import annotations

import json

from spice_runner import DuneClient
from spice_runner.cli import build_parameters, build_parser, main
from spice_runner.core.models import Parameter, ParameterType
from tests.support.stubs import StubTransport, results_payload, status_payload, stub_response


def make_client(responses):
    transport = StubTransport(responses)
    return DuneClient("test-key", transport=transport, sleep=lambda _: None), transport


def test_build_parameters_from_flags():
    args = build_parser().parse_args(
        [
            "run",
            "971694",
            "-p",
            "Token=ETH",
            "--number",
            "Min=100",
            "--list",
            "Chain=ethereum",
            "--date",
            "Since=2024-01-01T00:00:00+00:00",
        ]
    )
    params = build_parameters(args)
    assert params == [
        Parameter.text("Token", "ETH"),
        Parameter.number("Min", "100"),
        Parameter.list("Chain", "ethereum"),
        Parameter("Since", ParameterType.DATE, "2024-01-01 00:00:00"),
    ]


def test_run_prints_rows(capsys):
    client, transport = make_client(
        [
            stub_response({"execution_id": "01EXEC", "state": "QUERY_STATE_PENDING"}),
            stub_response(status_payload("QUERY_STATE_COMPLETED")),
            stub_response(results_payload([{"symbol": "ETH", "max_price": "1234.5"}])),
        ]
    )

    assert main(["run", "971694", "-p", "Token=ETH", "--interval", "0", "--limit", "5"], client=client) == 0

    rows = json.loads(capsys.readouterr().out)
    assert rows == [{"symbol": "ETH", "max_price": "1234.5"}]
    assert json.loads(transport.calls[0][3]) == {"query_parameters": {"Token": "ETH"}}
    assert transport.calls[2][1] == "/execution/01EXEC/results?limit=5"


def test_cancel_prints_acknowledgement(capsys):
    client, transport = make_client([stub_response({"success": True})])
    assert main(["cancel", "01EXEC"], client=client) == 0
    assert json.loads(capsys.readouterr().out) == {"execution_id": "01EXEC", "success": True}
    assert transport.calls[0][:2] == ("POST", "/execution/01EXEC/cancel")


def test_status_prints_state(capsys):
    client, _ = make_client([stub_response(status_payload("QUERY_STATE_EXECUTING"))])
    assert main(["status", "01EXEC"], client=client) == 0
    assert json.loads(capsys.readouterr().out)["state"] == "EXECUTING"


def test_errors_exit_non_zero(capsys):
    client, _ = make_client([stub_response({"error": "Query not found"}, status=404)])
    assert main(["run", "1"], client=client) == 1
    payload = json.loads(capsys.readouterr().err.splitlines()[-1])
    assert payload["error"]["kind"] == "dune"
    assert payload["context"] == {"command": "run"}
