from __future__ import annotations

from typing import Dict, List, Optional, Protocol, runtime_checkable

import httpx

from ..core.models import AuditRecord


@runtime_checkable
class AuditSink(Protocol):
    """Append-only destination for anomaly audit records."""

    async def write(self, record: AuditRecord) -> None: ...


class InMemoryAuditSink:
    """Keeps every record in a list. Used by the demo and in tests."""

    def __init__(self) -> None:
        self.records: List[AuditRecord] = []

    async def write(self, record: AuditRecord) -> None:
        self.records.append(record)


class HttpAuditSink:
    """
    Posts each AuditRecord as JSON to an audit-log service.

    Pass ``client`` to reuse a long-lived ``httpx.AsyncClient`` (connection
    pooling, custom transport in tests); otherwise a short-lived client is
    opened per write.
    """

    def __init__(
        self,
        url: str,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._client = client
        self._headers = headers or {}
        self._timeout = timeout

    async def write(self, record: AuditRecord) -> None:
        """
        Raises
        ------
        httpx.HTTPError
            If the service is unreachable or answers with a non-2xx status.
        """
        payload = record.model_dump(mode="json")
        if self._client is not None:
            response = await self._client.post(self._url, json=payload, headers=self._headers)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, json=payload, headers=self._headers)
        response.raise_for_status()
