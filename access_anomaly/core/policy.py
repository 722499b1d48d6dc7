from __future__ import annotations

from typing import Sequence

from .models import Alert, Severity


class BlockingPolicy:
    """
    Reduces the alerts of a single detection call to an allow/block verdict.

    Any alert at or above ``block_severity`` blocks on its own; otherwise
    ``high_alerts_to_block`` HIGH alerts together block. Stateless: only the
    alerts passed in are considered, never historical ones.
    """

    def __init__(
        self,
        block_severity: Severity = Severity.CRITICAL,
        high_alerts_to_block: int = 2,
    ) -> None:
        self._block_severity = block_severity
        self._high_alerts_to_block = high_alerts_to_block

    def decide(self, alerts: Sequence[Alert]) -> bool:
        """Return True when access is allowed."""
        if any(a.severity.rank >= self._block_severity.rank for a in alerts):
            return False
        high_count = sum(1 for a in alerts if a.severity is Severity.HIGH)
        return high_count < self._high_alerts_to_block
