from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence, Union

from .models import GuardConfig, RequestSignals

HeaderValue = Union[str, Sequence[str], None]


def _lookup(headers: Mapping[str, HeaderValue], name: str) -> HeaderValue:
    """Case-insensitive header lookup; returns None when absent."""
    if name in headers:
        return headers[name]
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def first_forwarded_ip(value: Any) -> Optional[str]:
    """
    Return the client entry of a forwarded-for header.

    Accepts either a comma-separated string (``"203.0.113.1, 70.41.3.18"``)
    or a list of entries as some servers expose repeated headers.
    """
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if not isinstance(value, str):
        return None
    first = value.split(",")[0].strip()
    return first or None


def extract_signals(
    headers: Mapping[str, HeaderValue],
    remote_addr: Optional[str] = None,
    now: Optional[float] = None,
    config: GuardConfig = GuardConfig(),
) -> RequestSignals:
    """
    Normalise raw request headers into RequestSignals.

    Parameters
    ----------
    headers:
        Request headers as exposed by the web framework (string or list values).
    remote_addr:
        Socket peer address, used when no forwarded-for header is present.
    now:
        Request wall-clock time in epoch seconds; defaults to the current time.
    config:
        Supplies the header names to read.
    """
    ip = first_forwarded_ip(_lookup(headers, config.forwarded_for_header)) or remote_addr
    fields = {
        "ip": ip,
        "user_agent": _lookup(headers, config.user_agent_header),
        "location": _lookup(headers, config.country_header),
    }
    if now is not None:
        fields["timestamp"] = now
    return RequestSignals(**fields)
