"""
Complaint External Service Integrations
=======================================

External services for the complaint desk:
- SLA policy YAML loader with file watcher
- Webhook notifications (Slack-compatible) behind a circuit breaker
- APScheduler for background SLA sweeps and survey expiry
"""

import asyncio
import threading
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from src.config import NotificationKind, settings
from src.core import ConfigurationException, DependencyFailureException
from src.complaints.application.interfaces import INotificationGateway, ISLAPolicyProvider
from src.complaints.domain import SLAPolicy
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== SLA policy ==========

class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA policy file changes."""

    def __init__(self, config_manager: "SLAConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        """Handle file modification event."""
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("SLA policy file changed", extra={"path": event.src_path})
            self.config_manager.reload()


class SLAConfigManager(ISLAPolicyProvider):
    """
    Thread-safe SLA policy manager with hot-reload support.

    Uses watchdog to monitor file changes and reload the policy without
    restarting the service. A broken file on reload keeps the previous
    policy in force.
    """

    def __init__(self):
        self._policy: Optional[SLAPolicy] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> SLAPolicy:
        """
        Initial policy load.

        Raises:
            ConfigurationException: if the file exists but is not a valid policy
        """
        self._path = path
        try:
            self._policy = self._load_from_file(path)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(f"Invalid SLA policy file {path}: {e}") from e
        return self._policy

    def _load_from_file(self, path: Path) -> SLAPolicy:
        """Load and parse YAML policy file."""
        if not path.exists():
            logger.warning("SLA policy file not found, using defaults", extra={"path": str(path)})
            return SLAPolicy()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return SLAPolicy(**data)

    def reload(self) -> bool:
        """Reload the policy from file."""
        if self._path is None:
            return False

        try:
            new_policy = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValidationError, TypeError) as e:
            logger.error("Failed to reload SLA policy", extra={"error": str(e)})
            return False

        with self._lock:
            self._policy = new_policy
        logger.info("SLA policy reloaded successfully")
        return True

    def start_watching(self) -> None:
        """
        Start watching the policy file for changes.

        Skips watching if the file doesn't exist or inotify is unavailable
        (e.g. some container runtimes).
        """
        if self._path is None:
            raise RuntimeError("Policy not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                "SLA policy file doesn't exist, skipping file watch",
                extra={"path": str(self._path)}
            )
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(
                handler,
                str(self._path.parent),
                recursive=False
            )
            self._observer.start()
            logger.info("Started watching SLA policy file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning(
                "File watching not available, using static policy",
                extra={"error": str(e)}
            )
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching the policy file (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_policy(self) -> SLAPolicy:
        with self._lock:
            if self._policy is None:
                raise RuntimeError("SLA policy not loaded")
            return self._policy


class StaticSLAPolicyProvider(ISLAPolicyProvider):
    """Fixed policy, for tests and embedded use."""

    def __init__(self, policy: Optional[SLAPolicy] = None):
        self._policy = policy or SLAPolicy()

    def get_policy(self) -> SLAPolicy:
        return self._policy

    def set_policy(self, policy: SLAPolicy) -> None:
        self._policy = policy


# ========== Notifications ==========

class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if self._clock() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


_HEADERS = {
    NotificationKind.SLA_BREACH: ":rotating_light: SLA Breach",
    NotificationKind.ESCALATION: ":arrow_up: Complaint Escalated",
    NotificationKind.RESOLUTION_SUBMITTED: ":white_check_mark: Resolution Submitted",
    NotificationKind.SURVEY_INVITE: ":memo: Satisfaction Survey",
}

_FIELD_LABELS = (
    ("ticket_number", "Ticket"),
    ("priority", "Priority"),
    ("breach_type", "SLA Type"),
    ("escalation_level", "Escalation Level"),
    ("escalated_to", "Escalated To"),
    ("overdue_minutes", "Overdue (min)"),
    ("expires_at", "Expires"),
)


class WebhookNotificationGateway(INotificationGateway):
    """
    Webhook notification client with circuit breaker and retry logic.

    Posts Slack Block Kit messages with:
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - Timeout handling
    """

    def __init__(
        self,
        webhook_url: str,
        channel: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: int = 3,
        circuit_breaker: Optional[CircuitBreaker] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._webhook_url = webhook_url
        self._channel = channel or settings.notification_channel
        self._timeout = timeout_seconds or settings.notification_timeout_seconds
        self._max_retries = max_retries
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60
        )
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def build_message(self, recipient: str, kind: NotificationKind, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Build Slack Block Kit message."""
        fields = [{"type": "mrkdwn", "text": f"*To:*\n{recipient}"}]
        for key, label in _FIELD_LABELS:
            value = payload.get(key)
            if value is not None:
                fields.append({"type": "mrkdwn", "text": f"*{label}:*\n{value}"})

        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": _HEADERS[kind], "emoji": True}
            },
            {"type": "section", "fields": fields},
        ]
        context = payload.get("subject") or payload.get("reason")
        if context:
            blocks.append({
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": str(context)}]
            })

        return {"channel": self._channel, "blocks": blocks}

    async def notify(self, recipient: str, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        """
        Post one notification.

        Raises:
            DependencyFailureException: if the circuit is open or every attempt failed
        """
        if not self._circuit_breaker.allow_request():
            raise DependencyFailureException("notifications", "circuit breaker open")

        message = self.build_message(recipient, kind, payload)
        last_error = "no attempt made"

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=message)

                if response.status_code == 200:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Notification sent",
                        extra={"recipient": recipient, "kind": kind.value}
                    )
                    return
                last_error = f"webhook returned {response.status_code}"
                logger.warning(
                    "Notification webhook returned non-200",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )
            except httpx.HTTPError as e:
                last_error = str(e)
                logger.warning(
                    "Notification attempt failed",
                    extra={"error": str(e), "attempt": attempt + 1, "kind": kind.value}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(2 ** attempt)

        self._circuit_breaker.record_failure()
        raise DependencyFailureException("notifications", last_error)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class LoggingNotificationGateway(INotificationGateway):
    """Writes notifications to the log. Used when no webhook is configured."""

    async def notify(self, recipient: str, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        logger.info(
            "Notification",
            extra={"recipient": recipient, "kind": kind.value, "ticket_id": payload.get("ticket_id")}
        )


# ========== Scheduler ==========

ScheduledJob = Tuple[str, Callable[[], Awaitable[Any]], int]


class SLAScheduler:
    """
    Wrapper for APScheduler for background jobs.

    Manages the lifecycle of the scheduler and its interval jobs.
    """

    def __init__(self):
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, jobs: List[ScheduledJob]) -> None:
        """Start the scheduler with (job_id, coroutine function, interval seconds) jobs."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()

        for job_id, job_func, interval_seconds in jobs:
            self._scheduler.add_job(
                job_func,
                "interval",
                seconds=interval_seconds,
                id=job_id,
                name=job_id.replace("_", " ").title(),
                misfire_grace_time=60,
                max_instances=1,
                coalesce=True,
                replace_existing=True
            )

        self._scheduler.start()
        self._running = True

        logger.info(
            "Scheduler started",
            extra={"jobs": [job_id for job_id, _, _ in jobs]}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("Scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
