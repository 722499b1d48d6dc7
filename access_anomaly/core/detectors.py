from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Sequence

from .models import AccessPattern, Alert, AlertType, GuardConfig, RequestSignals, Severity

logger = logging.getLogger(__name__)


class Detector:
    """
    One signal detector: inspects a post-merge AccessPattern snapshot and the
    current RequestSignals and returns at most one Alert.

    Subclasses hold their thresholds and never mutate the pattern.
    """

    alert_type: AlertType

    def detect(self, pattern: AccessPattern, signals: RequestSignals) -> Optional[Alert]:
        raise NotImplementedError

    def _alert(
        self,
        severity: Severity,
        pattern: AccessPattern,
        signals: RequestSignals,
        **details,
    ) -> Alert:
        return Alert(
            type=self.alert_type,
            severity=severity,
            user_id=pattern.user_id,
            details=details,
            timestamp=signals.timestamp,
        )


class MultipleIPsDetector(Detector):
    """Credential sharing / session hijacking: too many distinct client IPs."""

    alert_type = AlertType.MULTIPLE_IPS

    def __init__(self, max_ips: int, critical_ips: int) -> None:
        self._max_ips = max_ips
        self._critical_ips = critical_ips

    def detect(self, pattern: AccessPattern, signals: RequestSignals) -> Optional[Alert]:
        ip_count = len(pattern.ips)
        if ip_count <= self._max_ips:
            return None
        severity = Severity.CRITICAL if ip_count > self._critical_ips else Severity.HIGH
        return self._alert(severity, pattern, signals, ipCount=ip_count)


class SuspiciousUserAgentDetector(Detector):
    """Automated tooling that rotates client fingerprints."""

    alert_type = AlertType.SUSPICIOUS_USER_AGENT

    def __init__(self, max_user_agents: int) -> None:
        self._max_user_agents = max_user_agents

    def detect(self, pattern: AccessPattern, signals: RequestSignals) -> Optional[Alert]:
        ua_count = len(pattern.user_agents)
        if ua_count <= self._max_user_agents:
            return None
        return self._alert(Severity.MEDIUM, pattern, signals, userAgentCount=ua_count)


class ExcessiveRequestsDetector(Detector):
    """Scraping / automation: request rate from the current IP in the trailing window."""

    alert_type = AlertType.EXCESSIVE_REQUESTS

    def __init__(self, max_requests: int, critical_requests: int) -> None:
        self._max_requests = max_requests
        self._critical_requests = critical_requests

    def detect(self, pattern: AccessPattern, signals: RequestSignals) -> Optional[Alert]:
        request_count = pattern.request_count(signals.ip)
        if request_count <= self._max_requests:
            return None
        severity = (
            Severity.CRITICAL if request_count > self._critical_requests else Severity.HIGH
        )
        return self._alert(
            severity, pattern, signals, requestCount=request_count, ip=signals.ip
        )


class RapidLocationChangeDetector(Detector):
    """Account takeover: the same account seen from too many countries."""

    alert_type = AlertType.RAPID_LOCATION_CHANGE

    def __init__(self, max_locations: int) -> None:
        self._max_locations = max_locations

    def detect(self, pattern: AccessPattern, signals: RequestSignals) -> Optional[Alert]:
        if len(pattern.locations) <= self._max_locations:
            return None
        return self._alert(
            Severity.HIGH, pattern, signals, locations=sorted(pattern.locations)
        )


class UnusualTimeDetector(Detector):
    """Soft behavioural signal: access during the configured off-hours (local time)."""

    alert_type = AlertType.UNUSUAL_TIME

    def __init__(self, start_hour: int, end_hour: int) -> None:
        self._start_hour = start_hour
        self._end_hour = end_hour

    def detect(self, pattern: AccessPattern, signals: RequestSignals) -> Optional[Alert]:
        hour = datetime.fromtimestamp(signals.timestamp).hour
        if not self._start_hour <= hour < self._end_hour:
            return None
        return self._alert(Severity.LOW, pattern, signals, hour=hour)


class DetectorSet:
    """
    Runs every detector against one snapshot.

    A detector that raises is logged and contributes no alert; the remaining
    detectors still run. Adding a signal means appending a Detector here
    without touching AccessGuard.
    """

    def __init__(self, detectors: Sequence[Detector]) -> None:
        self._detectors = list(detectors)

    @classmethod
    def from_config(cls, config: GuardConfig) -> "DetectorSet":
        return cls([
            MultipleIPsDetector(config.max_distinct_ips, config.critical_distinct_ips),
            SuspiciousUserAgentDetector(config.max_user_agents),
            ExcessiveRequestsDetector(
                config.max_requests_per_window, config.critical_requests_per_window
            ),
            RapidLocationChangeDetector(config.max_locations),
            UnusualTimeDetector(config.unusual_hour_start, config.unusual_hour_end),
        ])

    @property
    def detectors(self) -> List[Detector]:
        return list(self._detectors)

    def evaluate(self, pattern: AccessPattern, signals: RequestSignals) -> List[Alert]:
        alerts: List[Alert] = []
        for detector in self._detectors:
            try:
                alert = detector.detect(pattern, signals)
            except Exception:
                logger.exception(
                    "Detector %s failed for user %s; skipping",
                    type(detector).__name__,
                    pattern.user_id,
                )
                continue
            if alert is not None:
                alerts.append(alert)
        return alerts
