"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Summary


REQUEST_COUNTER = Counter(
	"studenthub_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"studenthub_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

NEED_POSTS_CREATED = Counter(
	"studenthub_need_posts_created_total",
	"Need posts created",
	["kind"],
)

NEED_POSTS_CLOSED = Counter(
	"studenthub_need_posts_closed_total",
	"Need posts leaving the open state",
	["status"],
)

INTERESTS_EXPRESSED = Counter(
	"studenthub_interests_expressed_total",
	"Interest expression attempts by outcome",
	["result"],
)

INTERESTS_REJECTED = Counter(
	"studenthub_interests_rejected_total",
	"Interest expressions rejected by post creators",
)

GROUPS_FORMED = Counter(
	"studenthub_groups_formed_total",
	"Group creation requests by outcome",
	["result"],
)

MEMBERS_ADMITTED = Counter(
	"studenthub_group_members_admitted_total",
	"Members admitted into groups",
)

ADMISSIONS_REJECTED = Counter(
	"studenthub_group_admissions_rejected_total",
	"Admission batches rejected",
	["reason"],
)

MEMBERS_LEFT = Counter(
	"studenthub_group_members_left_total",
	"Members who left a group",
)

GROUP_STATUS_CHANGES = Counter(
	"studenthub_group_status_changes_total",
	"Group status transitions by target status and source",
	["status", "source"],
)

REDIS_UP = Gauge("studenthub_redis_up", "Redis availability (1=up,0=down)")
REDIS_LATENCY = Summary("studenthub_redis_latency_seconds", "Redis ping latency (seconds)")

POSTGRES_UP = Gauge("studenthub_postgres_up", "Postgres availability (1=up,0=down)")
POSTGRES_LATENCY = Summary("studenthub_postgres_latency_seconds", "Postgres ping latency (seconds)")


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def inc_need_post_created(kind: str) -> None:
	NEED_POSTS_CREATED.labels(kind=kind).inc()


def inc_need_post_closed(status: str) -> None:
	NEED_POSTS_CLOSED.labels(status=status).inc()


def inc_interest_expressed(result: str) -> None:
	INTERESTS_EXPRESSED.labels(result=result).inc()


def inc_interests_rejected(count: int = 1) -> None:
	if count > 0:
		INTERESTS_REJECTED.inc(count)


def inc_group_formed(result: str) -> None:
	GROUPS_FORMED.labels(result=result).inc()


def inc_members_admitted(count: int = 1) -> None:
	if count > 0:
		MEMBERS_ADMITTED.inc(count)


def inc_admission_rejected(reason: str) -> None:
	ADMISSIONS_REJECTED.labels(reason=reason).inc()


def inc_member_left() -> None:
	MEMBERS_LEFT.inc()


def inc_group_status_changed(status: str, source: str) -> None:
	GROUP_STATUS_CHANGES.labels(status=status, source=source).inc()


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)


def mark_postgres(ok: bool, *, latency_seconds: float | None = None) -> None:
	POSTGRES_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		POSTGRES_LATENCY.observe(latency_seconds)
