"""
Exchange Online admin REST client.
Runs read-only cmdlets (Get-*) through the InvokeCommand endpoint, with the
same retry, throttling and @odata.nextLink paging as the Graph client.
"""

from __future__ import annotations

import logging
from typing import Any, Iterator, Optional

import httpx

from ..config import EXCHANGE_BASE_URL, EXCHANGE_PAGE_SIZE
from ..graph.client import GraphClient, GraphAPIError, raise_for_flags
from ..safety.guardian import SafetyGuardian

logger = logging.getLogger("m365_admin_reports.exchange")

# Well-known system mailbox used to route app-only admin API calls
_SYSTEM_MAILBOX = "SystemMailbox{bb558c35-97f1-4cb9-8ff7-d53741dc928c}"

_NOT_FOUND_MARKERS = ("ManagementObjectNotFoundException", "couldn't be found")


class ExchangeClient(GraphClient):
    """
    Client for https://outlook.office365.com/adminapi/beta/{tenant}/InvokeCommand.
    Every call is a POST carrying {"CmdletInput": {"CmdletName", "Parameters"}};
    the Safety Guardian only lets Get-* cmdlets through.
    """

    def __init__(
        self,
        access_token: str,
        guardian: SafetyGuardian,
        tenant_id: str,
        organization: str = "",
        transport: Optional[httpx.BaseTransport] = None,
    ):
        super().__init__(access_token, guardian, transport=transport)
        self.tenant_id = tenant_id
        self.organization = organization

    def _default_headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Prefer": f"odata.maxpagesize={EXCHANGE_PAGE_SIZE}",
        }
        if self.organization:
            headers["X-AnchorMailbox"] = f"APP:{_SYSTEM_MAILBOX}@{self.organization}"
        return headers

    def _build_url(self, endpoint: str, beta: bool = False) -> str:
        if endpoint.startswith("http"):
            return endpoint
        return f"{EXCHANGE_BASE_URL}/{self.tenant_id}/{endpoint.lstrip('/')}"

    @staticmethod
    def _command_body(cmdlet: str, parameters: Optional[dict]) -> dict:
        return {
            "CmdletInput": {
                "CmdletName": cmdlet,
                "Parameters": dict(parameters or {}),
            }
        }

    def invoke_stream(self, cmdlet: str, parameters: Optional[dict] = None) -> Iterator[dict]:
        """Run a cmdlet and yield every output object across all pages."""
        url = self._build_url("InvokeCommand")
        body = self._command_body(cmdlet, parameters)
        logger.debug(f"Invoking {cmdlet} {body['CmdletInput']['Parameters']}")
        yield from self._paginate("POST", url, json_body=body, label=cmdlet)

    def invoke(self, cmdlet: str, parameters: Optional[dict] = None) -> list[dict]:
        """Run a cmdlet and return all output objects."""
        return list(self.invoke_stream(cmdlet, parameters))

    def invoke_single(self, cmdlet: str, parameters: Optional[dict] = None) -> Optional[dict]:
        """
        Run a cmdlet expected to return one object (e.g. Get-Recipient -Identity).
        Returns None when the object does not exist or the cmdlet produced no
        output; a 403 or exhausted throttling retries raise GraphAPIError.
        """
        url = self._build_url("InvokeCommand")
        body = self._command_body(cmdlet, parameters)
        self.guardian.validate_request("POST", url, body)
        try:
            data = self._execute_with_retry("POST", url, json_body=body)
        except GraphAPIError as e:
            # Missing objects surface as a 400 carrying the cmdlet's exception name
            if any(marker in str(e) for marker in _NOT_FOUND_MARKERS):
                return None
            raise
        raise_for_flags(data, url)
        if data.get("_not_found"):
            return None
        values: list[Any] = data.get("value", [])
        return values[0] if values else None

    def get_recipient(self, identity: str) -> dict:
        """Resolve any recipient identity (SMTP, alias, DN, display name)."""
        recipient = self.invoke_single("Get-Recipient", {"Identity": identity})
        if recipient is None:
            raise LookupError(f"Recipient not found: {identity}")
        return recipient

    def get_mailboxes(self, identity: Optional[str] = None) -> list[dict]:
        """All mailboxes, or the single mailbox matching identity."""
        if identity:
            mailbox = self.invoke_single("Get-Mailbox", {"Identity": identity})
            return [mailbox] if mailbox else []
        return self.invoke("Get-Mailbox", {"ResultSize": "Unlimited"})
