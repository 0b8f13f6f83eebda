"""
Grafana OTLP Metrics Exporter
==============================

Pushes SLA sweep metrics to Grafana Cloud via OTLP.

Metrics exported:
- sla_sweep_tickets_evaluated: Tickets evaluated by a sweep
- sla_sweep_breaches_created: New breach records
- sla_sweep_escalations_applied: Escalations applied
- sla_sweep_errors: Per-ticket failures
- sla_sweep_duration_ms: Wall time of the sweep
"""

import base64
import time
from typing import Any, Dict, List, Optional

import httpx

from src.config import settings
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class GrafanaOTLPExporter:
    """
    Export SLA metrics to Grafana Cloud via OTLP HTTP endpoint.

    Uses OpenTelemetry Protocol (OTLP) format for metrics.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        api_key: Optional[str] = None,
        instance_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize Grafana OTLP exporter.

        Args:
            host: Grafana OTLP gateway URL (e.g., https://otlp-gateway-prod-ap-south-1.grafana.net)
            api_key: Grafana API key
            instance_id: Instance ID for authentication
            transport: Optional httpx transport (tests)
        """
        self._host = host or settings.grafana_host
        self._api_key = api_key or settings.grafana_api_key
        self._instance_id = instance_id or settings.grafana_instance_id
        self._transport = transport
        self._enabled = bool(self._host and self._api_key and self._instance_id)

        if self._enabled:
            # Encode authentication
            auth_pair = f"{self._instance_id}:{self._api_key}"
            self._auth_encoded = base64.b64encode(auth_pair.encode()).decode()
            # Don't double-append the path if host already includes it
            if "/otlp/v1/metrics" not in self._host:
                self._url = f"{self._host}/otlp/v1/metrics"
            else:
                self._url = self._host
            logger.info(
                "Grafana OTLP exporter initialized",
                extra={"host": self._host, "instance_id": self._instance_id}
            )
        else:
            logger.info("Grafana OTLP exporter not configured - metrics will not be exported")

    def is_enabled(self) -> bool:
        """Check if exporter is properly configured."""
        return self._enabled

    def _build_payload(
        self,
        values: Dict[str, int],
        attributes: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        timestamp_ns = int(time.time() * 1_000_000_000)
        metric_attributes = [{"key": "service", "value": {"stringValue": settings.app_name}}]
        for key, value in (attributes or {}).items():
            metric_attributes.append({"key": key, "value": {"stringValue": str(value)}})

        metrics: List[Dict[str, Any]] = []
        for name, value in values.items():
            metrics.append({
                "name": name,
                "unit": "ms" if name.endswith("_ms") else "1",
                "gauge": {
                    "dataPoints": [
                        {
                            "asInt": int(value),
                            "timeUnixNano": timestamp_ns,
                            "attributes": metric_attributes
                        }
                    ]
                }
            })

        return {
            "resourceMetrics": [
                {
                    "resource": {
                        "attributes": [
                            {"key": "service.name", "value": {"stringValue": settings.app_name}},
                            {"key": "service.version", "value": {"stringValue": settings.app_version}},
                            {"key": "deployment.environment", "value": {"stringValue": settings.environment}},
                        ]
                    },
                    "scopeMetrics": [{"metrics": metrics}]
                }
            ]
        }

    async def export_sweep_metrics(self, report) -> bool:
        """
        Export the counters of one SLA sweep.

        Args:
            report: SweepReport returned by ``SLAMonitor.sweep``

        Returns:
            True if export succeeded, False otherwise
        """
        if not self._enabled:
            return False

        duration_ms = 0
        if report.finished_at is not None:
            duration_ms = int((report.finished_at - report.started_at).total_seconds() * 1000)

        payload = self._build_payload({
            "sla_sweep_tickets_evaluated": report.tickets_evaluated,
            "sla_sweep_breaches_created": report.breaches_created,
            "sla_sweep_escalations_applied": report.escalations_applied,
            "sla_sweep_errors": len(report.errors),
            "sla_sweep_duration_ms": duration_ms,
        })

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Basic {self._auth_encoded}",
            "X-Grafana-Org-Id": str(self._instance_id)
        }

        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.post(self._url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.error(
                "Error exporting metrics to Grafana",
                extra={"error": str(e)}
            )
            return False

        if response.status_code in (200, 202):
            logger.debug("SLA sweep metrics exported to Grafana")
            return True

        logger.warning(
            "Failed to export metrics to Grafana",
            extra={
                "status_code": response.status_code,
                "response": response.text[:500],
                "url": self._url
            }
        )
        return False


def init_grafana_exporter(
    host: str,
    api_key: str,
    instance_id: str
) -> GrafanaOTLPExporter:
    """Build the exporter used by the metrics push job."""
    return GrafanaOTLPExporter(
        host=host,
        api_key=api_key,
        instance_id=instance_id
    )
