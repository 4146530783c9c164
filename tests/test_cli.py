import csv
import logging

import httpx
import pytest

from m365_admin_reports import __main__ as cli
from m365_admin_reports import __mode__
from m365_admin_reports import profiles
from m365_admin_reports.auth.authenticator import Authenticator
from m365_admin_reports.exchange.client import ExchangeClient
from m365_admin_reports.graph.client import GraphClient

TENANT = ["--tenant-id", "tenant-1", "--client-id", "client-1"]


@pytest.fixture(autouse=True)
def isolated_profiles(tmp_path, monkeypatch):
    path = tmp_path / "home" / "profiles.json"
    monkeypatch.setattr(profiles, "_PROFILES_FILE", path)
    return path


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logger = logging.getLogger("m365_admin_reports")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def no_auth(monkeypatch):
    def refuse(self, scopes=None):
        raise AssertionError("authentication must not be attempted")

    monkeypatch.setattr(Authenticator, "acquire_token", refuse)


@pytest.fixture
def mock_graph(monkeypatch):
    """Route the CLI's Graph traffic to a MockTransport handler."""
    monkeypatch.setattr(Authenticator, "acquire_token", lambda self, scopes=None: "token")

    def install(handler):
        monkeypatch.setattr(
            cli,
            "GraphClient",
            lambda token, guardian: GraphClient(token, guardian, transport=httpx.MockTransport(handler)),
        )

    return install


@pytest.fixture
def mock_exchange(monkeypatch):
    """Route the CLI's Exchange admin traffic to a MockTransport handler."""
    monkeypatch.setattr(Authenticator, "acquire_token", lambda self, scopes=None: "token")

    def install(handler):
        monkeypatch.setattr(
            cli,
            "ExchangeClient",
            lambda token, guardian, **kwargs: ExchangeClient(
                token, guardian, transport=httpx.MockTransport(handler), **kwargs
            ),
        )

    return install


def graph_handler(routes):
    def handler(request):
        path = request.url.path.split("/v1.0/", 1)[-1]
        if path not in routes:
            return httpx.Response(404, json={"error": {"message": f"no route {path}"}})
        status, body = routes[path]
        return httpx.Response(status, json=body)
    return handler


def read_csv(path):
    with open(path, newline="", encoding="utf-8-sig") as fh:
        return list(csv.reader(fh))


# ─── Validation happens before any remote call ───────────────────────────────

@pytest.mark.parametrize("argv", [
    ["sign-ins", "--days", "2", "--hours", "3"],
    ["sign-ins", "--hours", "0"],
    ["mobile-devices", "--min-version", "sixteen"],
    ["group-members", "--delimiter", ";;"],
    ["auth-methods", "--preview", "-1"],
])
def test_invalid_parameters_fail_before_auth(argv, no_auth, capsys):
    assert cli.main(argv + TENANT) == 1
    assert "❌" in capsys.readouterr().out


def test_missing_credentials_fail_before_auth(no_auth, capsys):
    assert cli.main(["sign-ins"]) == 1
    assert "No tenant credentials found" in capsys.readouterr().out


def test_invalid_choice_is_a_usage_error():
    with pytest.raises(SystemExit) as exc:
        cli.main(["role-eligibility", "--principal-type", "robot"] + TENANT)
    assert exc.value.code == 2


def test_no_command_prints_help():
    assert cli.main([]) == 2


# ─── Full runs against a mocked tenant ───────────────────────────────────────

GROUP = {"id": "g1", "displayName": "All Staff", "groupTypes": ["Unified"], "mail": "allstaff@contoso.com"}


def test_group_members_run_writes_csv(tmp_path, mock_graph):
    mock_graph(graph_handler({
        "groups": (200, {"value": [GROUP]}),
        "groups/g1/members": (200, {"value": [
            {"@odata.type": "#microsoft.graph.user", "id": "u2", "displayName": "Bob",
             "userPrincipalName": "bob@contoso.com"},
            {"@odata.type": "#microsoft.graph.user", "id": "u1", "displayName": "Adele",
             "userPrincipalName": "adele@contoso.com"},
        ]}),
    }))

    code = cli.main(["group-members", "--output-dir", str(tmp_path / "out"), "--delimiter", ";"] + TENANT)

    assert code == 0
    files = list((tmp_path / "out").glob("group-members_*.csv"))
    assert len(files) == 1
    with open(files[0], newline="", encoding="utf-8-sig") as fh:
        lines = list(csv.reader(fh, delimiter=";"))
    assert lines[0][:3] == ["group_display_name", "group_type", "group_mail"]
    assert [line[3] for line in lines[1:]] == ["Adele", "Bob"]


def test_empty_result_writes_no_file(tmp_path, mock_graph, capsys):
    mock_graph(graph_handler({"groups": (200, {"value": []})}))

    code = cli.main(["group-members", "--output-dir", str(tmp_path)] + TENANT)

    assert code == 0
    assert list(tmp_path.glob("*.csv")) == []
    assert "No matching records" in capsys.readouterr().out


def test_pivot_written_beside_explicit_output(tmp_path, mock_graph):
    mock_graph(graph_handler({
        "users": (200, {"value": [
            {"id": "1", "displayName": "Adele", "userPrincipalName": "adele@contoso.com", "accountEnabled": True},
        ]}),
        "users/1/authentication/methods": (200, {"value": [
            {"@odata.type": "#microsoft.graph.passwordAuthenticationMethod"},
            {"@odata.type": "#microsoft.graph.fido2AuthenticationMethod", "model": "YubiKey 5"},
        ]}),
    }))
    output = tmp_path / "methods.csv"

    assert cli.main(["auth-methods", "--output", str(output), "--preview", "0"] + TENANT) == 0

    assert len(read_csv(output)) == 3
    pivot = read_csv(tmp_path / "methods_pivot.csv")
    assert pivot[0] == ["user_display_name", "user_principal_name", "account_enabled", "fido2", "password"]
    assert pivot[1] == ["Adele", "adele@contoso.com", "True", "1", "1"]


def test_missing_target_exits_nonzero(tmp_path, mock_graph, capsys):
    mock_graph(graph_handler({"groups": (200, {"value": []})}))

    code = cli.main(["group-members", "--group", "Nope", "--output-dir", str(tmp_path)] + TENANT)

    assert code == 1
    assert "Group not found: Nope" in capsys.readouterr().out
    assert list(tmp_path.glob("*.csv")) == []


def test_forbidden_fetch_exits_nonzero(tmp_path, mock_graph, capsys):
    mock_graph(graph_handler({
        "auditLogs/signIns": (403, {"error": {"message": "Insufficient privileges"}}),
    }))

    code = cli.main(["sign-ins", "--output-dir", str(tmp_path)] + TENANT)

    assert code == 1
    out = capsys.readouterr().out
    assert "Insufficient privileges" in out
    assert "AuditLog.Read.All" in out


FORBIDDEN = (403, {"error": {"message": "Insufficient privileges"}})


@pytest.mark.parametrize("argv, route", [
    (["auth-methods", "--user", "jane@contoso.com"], "users/jane@contoso.com"),
    (["group-members", "--group", "11111111-1111-1111-1111-111111111111"],
     "groups/11111111-1111-1111-1111-111111111111"),
])
def test_forbidden_single_target_is_not_reported_missing(argv, route, tmp_path, mock_graph, capsys):
    mock_graph(graph_handler({route: FORBIDDEN}))

    code = cli.main(argv + ["--output-dir", str(tmp_path)] + TENANT)

    assert code == 1
    out = capsys.readouterr().out
    assert "Remote call failed" in out
    assert "not found" not in out
    assert "GroupMember.Read.All" in out


def test_throttled_single_target_is_not_reported_missing(tmp_path, mock_graph, no_sleep, capsys):
    mock_graph(lambda r: httpx.Response(429, headers={"Retry-After": "0"}))

    code = cli.main(["auth-methods", "--user", "jane@contoso.com", "--output-dir", str(tmp_path)] + TENANT)

    assert code == 1
    out = capsys.readouterr().out
    assert "Remote call failed" in out
    assert "User not found" not in out


def test_forbidden_target_mailbox_is_not_reported_missing(tmp_path, mock_exchange, capsys):
    mock_exchange(lambda r: httpx.Response(403, json={"error": {"message": "Access denied"}}))

    code = cli.main([
        "inbox-rules", "--mailbox", "jane@contoso.com",
        "--organization", "contoso.onmicrosoft.com",
        "--output-dir", str(tmp_path),
    ] + TENANT)

    assert code == 1
    out = capsys.readouterr().out
    assert "Remote call failed" in out
    assert "Mailbox not found" not in out
    assert "Exchange.ManageAsApp" in out


def test_banner_states_read_only_mode(tmp_path, mock_graph, capsys):
    mock_graph(graph_handler({"groups": (200, {"value": []})}))

    cli.main(["group-members", "--output-dir", str(tmp_path)] + TENANT)

    assert f"Mode: {__mode__}" in capsys.readouterr().out


# ─── Profiles ────────────────────────────────────────────────────────────────

def test_profile_add_and_use(isolated_profiles, capsys):
    assert cli.main([
        "profile", "add", "contoso",
        "--tenant-id", "t-1", "--client-id", "c-1",
        "--organization", "contoso.onmicrosoft.com",
    ]) == 0
    assert isolated_profiles.exists()

    assert cli.main(["profile", "list"]) == 0
    assert "contoso.onmicrosoft.com" in capsys.readouterr().out

    args = cli.build_parser().parse_args(["inbox-rules"])
    config, profile = cli.build_config(args)
    assert profile.name == "contoso"
    assert config.auth.tenant_id == "t-1"
    assert config.auth.organization == "contoso.onmicrosoft.com"


def test_cli_flags_override_profile():
    profiles.ProfileStore().add(profiles.TenantProfile(name="contoso", tenant_id="t-1", client_id="c-1"))

    args = cli.build_parser().parse_args(["sign-ins", "--profile", "contoso", "--tenant-id", "t-2"])
    config, _ = cli.build_config(args)

    assert config.auth.tenant_id == "t-2"
    assert config.auth.certificate.client_id == "c-1"


def test_unknown_profile_fails(no_auth, capsys):
    assert cli.main(["sign-ins", "--profile", "ghost"]) == 1
    assert cli.main(["profile", "remove", "ghost"]) == 1
