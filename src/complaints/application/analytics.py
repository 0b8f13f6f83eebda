"""
Complaint Analytics
===================

Read-only aggregates over complaints, breaches and survey responses.
"""

from collections import Counter, defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional

from src.config import (
    ChangeKind, ComplaintCategory, ComplaintPriority, ComplaintStatus, TERMINAL_STATUSES,
)
from src.core import ValidationException
from src.complaints.application.dto import (
    CategoryAnalytics, ComplaintFilters, ComplaintStats, ComplaintTrend, TrendPoint,
)
from src.complaints.application.interfaces import UnitOfWorkFactory
from src.complaints.application.permissions import require_staff
from src.complaints.domain import Actor, Complaint, SLACalculator
from src.shared.infrastructure.clock import Clock

GRANULARITIES = ("day", "week", "month")
DEFAULT_PERIODS = {"day": 30, "week": 12, "month": 12}


def bucket_start(moment: datetime, granularity: str) -> date:
    day = moment.date()
    if granularity == "week":
        return day - timedelta(days=day.weekday())
    if granularity == "month":
        return day.replace(day=1)
    return day


def _next_bucket(start: date, granularity: str) -> date:
    if granularity == "week":
        return start + timedelta(days=7)
    if granularity == "month":
        if start.month == 12:
            return start.replace(year=start.year + 1, month=1)
        return start.replace(month=start.month + 1)
    return start + timedelta(days=1)


def _previous_bucket(start: date, granularity: str, periods: int) -> date:
    current = start
    for _ in range(periods - 1):
        if granularity == "month":
            current = (current - timedelta(days=1)).replace(day=1)
        elif granularity == "week":
            current -= timedelta(days=7)
        else:
            current -= timedelta(days=1)
    return current


def _average_resolution_minutes(complaints: Iterable[Complaint]) -> float:
    durations = [
        SLACalculator.minutes_between(c.created_at, c.resolved_at)
        for c in complaints if c.resolved_at is not None
    ]
    if not durations:
        return 0.0
    return round(sum(durations) / len(durations), 2)


def _percentage(part: int, whole: int, empty: float) -> float:
    if whole == 0:
        return empty
    return round(part * 100.0 / whole, 2)


class AnalyticsService:
    """Aggregates for dashboards. Never mutates anything."""

    def __init__(self, uow_factory: UnitOfWorkFactory, clock: Clock):
        self._uow_factory = uow_factory
        self._clock = clock

    async def stats(self, actor: Actor) -> ComplaintStats:
        require_staff(actor, "view complaint analytics")
        async with self._uow_factory() as uow:
            complaints = await uow.complaints.list(ComplaintFilters())
            breaches = await uow.breaches.list()
            responses = await uow.survey_responses.list()

        now = self._clock.now()
        breached_tickets = {b.ticket_id for b in breaches}
        by_status = Counter(c.status.value for c in complaints)
        by_priority = Counter(c.priority.value for c in complaints)
        by_category = Counter(c.category.value for c in complaints)

        return ComplaintStats(
            total=len(complaints),
            by_status={s.value: by_status.get(s.value, 0) for s in ComplaintStatus},
            by_priority={p.value: by_priority.get(p.value, 0) for p in ComplaintPriority},
            by_category={c.value: by_category.get(c.value, 0) for c in ComplaintCategory},
            open_tickets=sum(1 for c in complaints if c.status not in TERMINAL_STATUSES),
            escalated_tickets=sum(
                1 for c in complaints if c.is_escalated and c.status not in TERMINAL_STATUSES
            ),
            resolved_this_month=sum(
                1 for c in complaints
                if c.resolved_at is not None
                and (c.resolved_at.year, c.resolved_at.month) == (now.year, now.month)
            ),
            average_resolution_minutes=_average_resolution_minutes(complaints),
            sla_breach_count=len(breaches),
            sla_compliance_rate=_percentage(
                sum(1 for c in complaints if c.id not in breached_tickets), len(complaints), 100.0
            ),
            satisfaction_score=self._satisfaction(r.ratings.overall for r in responses),
        )

    async def trend(
        self,
        actor: Actor,
        granularity: str = "day",
        periods: Optional[int] = None
    ) -> ComplaintTrend:
        """
        Submitted, resolved and escalated counts per bucket, oldest first.

        Args:
            granularity: "day", "week" or "month"
            periods: Number of buckets ending with the current one
        """
        require_staff(actor, "view complaint analytics")
        if granularity not in GRANULARITIES:
            raise ValidationException(
                f"Unknown granularity '{granularity}'",
                fields={"granularity": f"must be one of {', '.join(GRANULARITIES)}"}
            )
        periods = periods or DEFAULT_PERIODS[granularity]
        if periods < 1 or periods > 366:
            raise ValidationException(
                "periods out of range",
                fields={"periods": "must be between 1 and 366"}
            )

        last = bucket_start(self._clock.now(), granularity)
        first = _previous_bucket(last, granularity, periods)

        async with self._uow_factory() as uow:
            complaints = await uow.complaints.list(ComplaintFilters())
            escalations = await uow.status_changes.list_by_kind(ChangeKind.ESCALATION)

        counts: Dict[date, Dict[str, int]] = defaultdict(Counter)
        for complaint in complaints:
            counts[bucket_start(complaint.created_at, granularity)]["submitted"] += 1
            if complaint.resolved_at is not None:
                counts[bucket_start(complaint.resolved_at, granularity)]["resolved"] += 1
        for change in escalations:
            counts[bucket_start(change.timestamp, granularity)]["escalated"] += 1

        points: List[TrendPoint] = []
        current = first
        while current <= last:
            bucket = counts.get(current, {})
            points.append(TrendPoint(
                bucket=current.isoformat(),
                submitted=bucket.get("submitted", 0),
                resolved=bucket.get("resolved", 0),
                escalated=bucket.get("escalated", 0),
            ))
            current = _next_bucket(current, granularity)

        return ComplaintTrend(granularity=granularity, points=points)

    async def category_analytics(self, actor: Actor) -> List[CategoryAnalytics]:
        """One row per category that has at least one complaint."""
        require_staff(actor, "view complaint analytics")
        async with self._uow_factory() as uow:
            complaints = await uow.complaints.list(ComplaintFilters())
            breaches = await uow.breaches.list()
            responses = await uow.survey_responses.list()

        breached_tickets = {b.ticket_id for b in breaches}
        by_category: Dict[ComplaintCategory, List[Complaint]] = defaultdict(list)
        for complaint in complaints:
            by_category[complaint.category].append(complaint)
        category_of = {c.id: c.category for c in complaints}
        ratings: Dict[ComplaintCategory, List[int]] = defaultdict(list)
        for response in responses:
            category = category_of.get(response.ticket_id)
            if category is not None:
                ratings[category].append(response.ratings.overall)

        rows = []
        for category in ComplaintCategory:
            items = by_category.get(category)
            if not items:
                continue
            resolved = sum(1 for c in items if c.is_resolved)
            pending = sum(1 for c in items if not c.is_resolved and c.status not in TERMINAL_STATUSES)
            rows.append(CategoryAnalytics(
                category=category,
                total=len(items),
                resolved=resolved,
                pending=pending,
                average_resolution_minutes=_average_resolution_minutes(items),
                breach_rate=_percentage(
                    sum(1 for c in items if c.id in breached_tickets), len(items), 0.0
                ),
                satisfaction_score=self._satisfaction(ratings.get(category, [])),
            ))
        return rows

    @staticmethod
    def _satisfaction(scores: Iterable[int]) -> float:
        scores = list(scores)
        if not scores:
            return 0.0
        return round(sum(scores) / len(scores), 2)
