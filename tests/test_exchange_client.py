import re

import httpx
import pytest

from m365_admin_reports.graph.client import GraphAPIError
from m365_admin_reports.safety.guardian import SafetyViolation

from .conftest import cmdlet_of

UTC_STAMP = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$")


def test_invoke_pages_with_same_command(exchange_client):
    seen = []

    def handler(request):
        name, params = cmdlet_of(request)
        seen.append((request.method, str(request.url), name, params))
        if "skiptoken" not in str(request.url):
            return httpx.Response(200, json={
                "value": [{"Identity": "d1"}, {"Identity": "d2"}],
                "@odata.nextLink": "https://outlook.office365.com/adminapi/beta/tenant-1/InvokeCommand?$skiptoken=2",
            })
        return httpx.Response(200, json={"value": [{"Identity": "d3"}]})

    client = exchange_client(handler)

    devices = client.invoke("Get-MobileDevice", {"ResultSize": "Unlimited"})

    assert [d["Identity"] for d in devices] == ["d1", "d2", "d3"]
    assert len(seen) == 2
    assert all(method == "POST" for method, *_ in seen)
    assert seen[0][1] == "https://outlook.office365.com/adminapi/beta/tenant-1/InvokeCommand"
    assert seen[1][2:] == ("Get-MobileDevice", {"ResultSize": "Unlimited"})


def test_headers_route_to_tenant(exchange_client):
    captured = {}

    def handler(request):
        captured.update(request.headers)
        return httpx.Response(200, json={"value": []})

    exchange_client(handler).invoke("Get-Mailbox")

    assert captured["authorization"] == "Bearer token"
    assert captured["x-anchormailbox"].endswith("@contoso.onmicrosoft.com")
    assert captured["prefer"] == "odata.maxpagesize=1000"


def test_write_cmdlets_are_blocked(exchange_client):
    client = exchange_client(lambda r: httpx.Response(200, json={"value": []}))

    with pytest.raises(SafetyViolation):
        client.invoke("Set-Mailbox", {"Identity": "a@contoso.com"})
    with pytest.raises(SafetyViolation):
        client.invoke_single("Remove-InboxRule", {"Identity": "x"})
    assert client.guardian.violations


def test_guardian_timestamps_are_utc(exchange_client):
    client = exchange_client(lambda r: httpx.Response(200, json={"value": []}))

    with pytest.raises(SafetyViolation):
        client.invoke("Set-Mailbox", {"Identity": "a@contoso.com"})

    audit = client.guardian.get_audit_record()
    assert audit["status"] == "VIOLATIONS_DETECTED"
    assert UTC_STAMP.match(audit["started_at"])
    assert UTC_STAMP.match(client.guardian.violations[0]["timestamp"])


def test_invoke_single_not_found_returns_none(exchange_client):
    client = exchange_client(lambda r: httpx.Response(400, json={"error": {
        "code": "BadRequest",
        "message": "|Microsoft.Exchange.Configuration.Tasks.ManagementObjectNotFoundException|"
                   "The operation couldn't be performed because object 'ghost' couldn't be found.",
    }}))

    assert client.invoke_single("Get-Mailbox", {"Identity": "ghost"}) is None
    assert client.get_mailboxes("ghost") == []
    with pytest.raises(LookupError):
        client.get_recipient("ghost")


def test_invoke_single_forbidden_raises(exchange_client):
    client = exchange_client(lambda r: httpx.Response(403, json={"error": {"message": "Access denied"}}))

    with pytest.raises(GraphAPIError) as exc:
        client.get_mailboxes("jane@contoso.com")
    assert exc.value.status_code == 403


def test_invoke_single_throttled_past_retries_raises(exchange_client, no_sleep):
    client = exchange_client(lambda r: httpx.Response(429, headers={"Retry-After": "0"}))

    with pytest.raises(GraphAPIError) as exc:
        client.invoke_single("Get-Mailbox", {"Identity": "jane@contoso.com"})
    assert exc.value.status_code == 429


def test_get_recipient_returns_first_object(exchange_client):
    def handler(request):
        name, params = cmdlet_of(request)
        assert name == "Get-Recipient"
        return httpx.Response(200, json={"value": [
            {"DisplayName": "Jane Doe", "PrimarySmtpAddress": params["Identity"]},
        ]})

    recipient = exchange_client(handler).get_recipient("jane@contoso.com")

    assert recipient["DisplayName"] == "Jane Doe"
