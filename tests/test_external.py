"""Webhook notifications, the circuit breaker, the metrics exporter and the YAML policy loader."""

import json

import httpx
import pytest

from src.config import ComplaintPriority, NotificationKind, settings
from src.core import ConfigurationException, DependencyFailureException
from src.complaints.application.monitor import SweepReport
from src.complaints.infrastructure.external import (
    CircuitBreaker, CircuitState, SLAConfigManager, WebhookNotificationGateway,
)
from src.shared.infrastructure.grafana import GrafanaOTLPExporter

from conftest import START

PAYLOAD = {
    "ticket_id": "t-1",
    "ticket_number": "CMP-2025-00001",
    "subject": "Broken projector",
    "priority": "high",
    "breach_type": "response",
    "overdue_minutes": 45,
}


def gateway_with(handler, **kwargs) -> WebhookNotificationGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebhookNotificationGateway(
        "https://hooks.example.test/desk", channel="#complaints", http_client=client, **kwargs
    )


# ========== Webhook ==========

async def test_webhook_posts_block_kit_message():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200)

    gateway = gateway_with(handler)
    await gateway.notify("coordinator", NotificationKind.SLA_BREACH, PAYLOAD)
    await gateway.close()

    [message] = seen
    assert message["channel"] == "#complaints"
    assert message["blocks"][0]["text"]["text"] == ":rotating_light: SLA Breach"
    texts = [f["text"] for f in message["blocks"][1]["fields"]]
    assert "*To:*\ncoordinator" in texts
    assert "*Overdue (min):*\n45" in texts
    assert message["blocks"][2]["elements"][0]["text"] == "Broken projector"


async def test_webhook_failure_raises_dependency_failure():
    gateway = gateway_with(lambda request: httpx.Response(500), max_retries=1)

    with pytest.raises(DependencyFailureException) as exc_info:
        await gateway.notify("coordinator", NotificationKind.ESCALATION, PAYLOAD)
    assert "500" in exc_info.value.message


async def test_webhook_retries_transport_errors():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200)

    gateway = gateway_with(handler, max_retries=2)
    await gateway.notify("coordinator", NotificationKind.ESCALATION, PAYLOAD)
    assert len(calls) == 2


async def test_open_circuit_short_circuits_requests():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503)

    breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60)
    gateway = gateway_with(handler, max_retries=1, circuit_breaker=breaker)
    for _ in range(2):
        with pytest.raises(DependencyFailureException):
            await gateway.notify("coordinator", NotificationKind.ESCALATION, PAYLOAD)

    assert breaker.state == CircuitState.OPEN
    with pytest.raises(DependencyFailureException) as exc_info:
        await gateway.notify("coordinator", NotificationKind.ESCALATION, PAYLOAD)
    assert exc_info.value.message.endswith("circuit breaker open")
    assert len(calls) == 2


def test_circuit_half_opens_after_recovery_timeout():
    now = [0.0]
    breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=30, clock=lambda: now[0])

    breaker.record_failure()
    assert not breaker.allow_request()

    now[0] = 31.0
    assert breaker.state == CircuitState.HALF_OPEN
    breaker.record_failure()
    assert breaker.state == CircuitState.OPEN

    now[0] = 62.0
    breaker.record_success()
    assert breaker.state == CircuitState.CLOSED


# ========== Grafana ==========

def sweep_report() -> SweepReport:
    report = SweepReport(started_at=START, tickets_evaluated=4, breaches_created=1, escalations_applied=1)
    report.finished_at = START
    return report


async def test_exporter_disabled_without_credentials(monkeypatch):
    monkeypatch.setattr(settings, "grafana_api_key", None)
    exporter = GrafanaOTLPExporter(host="", api_key="", instance_id="")

    assert exporter.is_enabled() is False
    assert await exporter.export_sweep_metrics(sweep_report()) is False


async def test_exporter_pushes_sweep_gauges():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, request.headers["Authorization"], json.loads(request.content)))
        return httpx.Response(200)

    exporter = GrafanaOTLPExporter(
        host="https://otlp.example.test", api_key="key", instance_id="42",
        transport=httpx.MockTransport(handler)
    )

    assert await exporter.export_sweep_metrics(sweep_report()) is True
    [(path, auth, body)] = seen
    assert path == "/otlp/v1/metrics"
    assert auth.startswith("Basic ")
    metrics = body["resourceMetrics"][0]["scopeMetrics"][0]["metrics"]
    values = {m["name"]: m["gauge"]["dataPoints"][0]["asInt"] for m in metrics}
    assert values["sla_sweep_tickets_evaluated"] == 4
    assert values["sla_sweep_errors"] == 0


async def test_exporter_reports_rejection():
    exporter = GrafanaOTLPExporter(
        host="https://otlp.example.test", api_key="key", instance_id="42",
        transport=httpx.MockTransport(lambda request: httpx.Response(401, text="denied"))
    )
    assert await exporter.export_sweep_metrics(sweep_report()) is False


# ========== SLA policy file ==========

POLICY_YAML = """
default_targets:
  urgent:
    response: 60
    resolution: 480
default_assignee: front-office
max_escalation_level: 2
escalation_cap_action: reject
escalation_levels:
  - level: 1
    notify: [coordinator]
  - level: 2
    notify: [principal]
"""


def test_load_policy_file(tmp_path):
    path = tmp_path / "sla_config.yaml"
    path.write_text(POLICY_YAML)

    policy = SLAConfigManager().load(path)

    assert policy.default_assignee == "front-office"
    assert policy.get_default_targets(ComplaintPriority.URGENT).response_minutes == 60
    assert policy.get_default_targets(ComplaintPriority.LOW).resolution_minutes == 7200
    assert policy.escalation_cap_action == "reject"
    assert policy.get_recipients_for_level(5) == ["principal"]


def test_missing_policy_file_uses_defaults(tmp_path):
    manager = SLAConfigManager()
    policy = manager.load(tmp_path / "absent.yaml")

    assert policy.max_escalation_level == 3
    assert manager.get_policy() is policy
    manager.start_watching()
    manager.stop_watching()


@pytest.mark.parametrize("content", [
    "default_targets: [unclosed",
    "escalation_cap_action: shrug",
    "default_targets:\n  high:\n    response: 600\n    resolution: 60\n",
])
def test_invalid_policy_file(tmp_path, content):
    path = tmp_path / "sla_config.yaml"
    path.write_text(content)

    with pytest.raises(ConfigurationException):
        SLAConfigManager().load(path)


def test_reload_keeps_previous_policy_on_error(tmp_path):
    path = tmp_path / "sla_config.yaml"
    path.write_text(POLICY_YAML)
    manager = SLAConfigManager()
    manager.load(path)

    path.write_text("max_escalation_level: 0\n")
    assert manager.reload() is False
    assert manager.get_policy().max_escalation_level == 2

    path.write_text("max_escalation_level: 4\n")
    assert manager.reload() is True
    assert manager.get_policy().max_escalation_level == 4


def test_policy_must_be_loaded_first():
    with pytest.raises(RuntimeError):
        SLAConfigManager().get_policy()
