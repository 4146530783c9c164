from __future__ import annotations

import json
from typing import Any, Callable, Optional

import httpx
import pytest

from m365_admin_reports.exchange.client import ExchangeClient
from m365_admin_reports.graph.client import GraphClient
from m365_admin_reports.safety.guardian import SafetyGuardian


@pytest.fixture
def no_sleep(monkeypatch):
    monkeypatch.setattr("m365_admin_reports.graph.client.time.sleep", lambda seconds: None)


@pytest.fixture
def graph_client():
    """Factory: a live GraphClient backed by an httpx.MockTransport handler."""
    opened = []

    def make(handler: Callable[[httpx.Request], httpx.Response]) -> GraphClient:
        client = GraphClient("token", SafetyGuardian(), transport=httpx.MockTransport(handler))
        client.__enter__()
        opened.append(client)
        return client

    yield make
    for client in opened:
        client.__exit__(None, None, None)


@pytest.fixture
def exchange_client():
    opened = []

    def make(handler: Callable[[httpx.Request], httpx.Response]) -> ExchangeClient:
        client = ExchangeClient(
            "token",
            SafetyGuardian(),
            tenant_id="tenant-1",
            organization="contoso.onmicrosoft.com",
            transport=httpx.MockTransport(handler),
        )
        client.__enter__()
        opened.append(client)
        return client

    yield make
    for client in opened:
        client.__exit__(None, None, None)


def cmdlet_of(request: httpx.Request) -> tuple[str, dict]:
    body = json.loads(request.content)
    return body["CmdletInput"]["CmdletName"], body["CmdletInput"]["Parameters"]


class FakeExchange:
    """In-memory stand-in for ExchangeClient keyed by cmdlet name."""

    def __init__(
        self,
        outputs: Optional[dict[str, Callable[[dict], list]]] = None,
        mailboxes: Optional[list[dict]] = None,
        recipients: Optional[dict[str, dict]] = None,
    ):
        self.outputs = outputs or {}
        self.mailboxes = mailboxes or []
        self.recipients = recipients or {}
        self.calls: list[tuple[str, dict]] = []

    def invoke(self, cmdlet, parameters=None):
        self.calls.append((cmdlet, dict(parameters or {})))
        handler = self.outputs.get(cmdlet)
        return list(handler(parameters or {})) if handler else []

    def invoke_stream(self, cmdlet, parameters=None):
        return iter(self.invoke(cmdlet, parameters))

    def invoke_single(self, cmdlet, parameters=None):
        values = self.invoke(cmdlet, parameters)
        return values[0] if values else None

    def get_mailboxes(self, identity=None):
        if identity:
            return [
                m for m in self.mailboxes
                if identity.lower() in (m.get("PrimarySmtpAddress", "").lower(), m.get("Alias", "").lower())
            ]
        return list(self.mailboxes)

    def get_recipient(self, identity):
        self.calls.append(("Get-Recipient", {"Identity": identity}))
        if identity not in self.recipients:
            raise LookupError(f"Recipient not found: {identity}")
        return self.recipients[identity]


class FakeGraph:
    """In-memory stand-in for GraphClient keyed by endpoint."""

    def __init__(self, collections: Optional[dict[str, list]] = None, objects: Optional[dict[str, Any]] = None):
        self.collections = collections or {}
        self.objects = objects or {}
        self.calls: list[tuple[str, Optional[dict]]] = []

    def get(self, endpoint, params=None, beta=False):
        self.calls.append((endpoint, params))
        if endpoint in self.objects:
            return dict(self.objects[endpoint])
        return {"value": [], "_not_found": True}

    def get_object(self, endpoint, params=None, beta=False):
        value = self.objects.get(endpoint)
        self.calls.append((endpoint, params))
        if isinstance(value, Exception):
            raise value
        return dict(value) if value is not None else None

    def get_all_pages(self, endpoint, params=None, beta=False, top=None, skip_top=False):
        self.calls.append((endpoint, params))
        value = self.collections.get(endpoint, [])
        if isinstance(value, Exception):
            raise value
        return list(value)

    def get_all_pages_stream(self, endpoint, params=None, beta=False, top=None, skip_top=False):
        return iter(self.get_all_pages(endpoint, params, beta, top, skip_top))
