"""Admin moderation over groups, plus the usage overview."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

from app.find_my_group.domain import policies, repo as repo_module
from app.find_my_group.domain.exceptions import ForbiddenError, NotFoundError
from app.find_my_group.domain.formation_service import group_response
from app.find_my_group.schemas import dto
from app.infra.auth import AuthenticatedUser
from app.infra.postgres import get_pool
from app.obs import metrics as obs_metrics

LOGGER = logging.getLogger(__name__)

RECENT_ACTIVITY_DAYS = 7


def _require_admin(user: AuthenticatedUser) -> None:
	if not policies.is_admin(user):
		raise ForbiddenError("admin_required")


def engagement_rate(posts_with_interest: int, total_posts: int) -> float:
	"""Share of posts with at least one interest, as a percentage to one decimal."""
	if total_posts <= 0:
		return 0.0
	return round(posts_with_interest / total_posts * 100, 1)


class ModerationService:
	def __init__(self, repository: repo_module.FindMyGroupRepository | None = None) -> None:
		self.repo = repository or repo_module.FindMyGroupRepository()

	async def admin_list_groups(
		self,
		user: AuthenticatedUser,
		*,
		status: str | None = None,
		kind: str | None = None,
		visibility: str | None = None,
		limit: int = 50,
		offset: int = 0,
	) -> dto.GroupListResponse:
		_require_admin(user)
		groups, total = await self.repo.list_groups(
			status=status,
			kind=kind,
			visibility=visibility,
			limit=limit,
			offset=offset,
		)
		return dto.GroupListResponse(
			items=[group_response(group) for group in groups],
			total=total,
			limit=limit,
			offset=offset,
		)

	async def admin_set_group_status(
		self,
		user: AuthenticatedUser,
		group_id: UUID,
		payload: dto.GroupStatusUpdateRequest,
	) -> dto.GroupResponse:
		"""Archive or reactivate a group. Setting the current status is a no-op and is not audited."""
		_require_admin(user)
		admin_id = policies.actor_id(user)
		reason = (payload.reason or "").strip() or None
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				group = await self.repo.get_group(group_id, conn=conn, for_update=True)
				if group is None:
					raise NotFoundError("group_not_found")
				updated = await self.repo.set_group_status(group_id, to_status=payload.status, conn=conn)
				if updated is not None:
					await self.repo.record_audit_event(
						post_id=group.created_from_post,
						group_id=group_id,
						user_id=admin_id,
						action="group.status",
						details={"from": group.status, "to": payload.status, "reason": reason},
						conn=conn,
					)
		if updated is None:
			return group_response(group)
		obs_metrics.inc_group_status_changed(payload.status, "admin")
		LOGGER.info(
			"group_status_changed",
			extra={"group_id": str(group_id), "from_status": group.status, "to_status": payload.status},
		)
		return group_response(updated)

	async def analytics(self, user: AuthenticatedUser) -> dto.AnalyticsResponse:
		_require_admin(user)
		now = datetime.now(timezone.utc)
		stats = await self.repo.collect_analytics(now=now, since=now - timedelta(days=RECENT_ACTIVITY_DAYS))
		interest_counts = {"pending": 0, "approved": 0, "rejected": 0}
		interest_counts.update(stats["interests_by_status"])
		return dto.AnalyticsResponse(
			overview=dto.AnalyticsOverview(
				total_posts=stats["total_posts"],
				open_posts=stats["open_posts"],
				posts_with_interest=stats["posts_with_interest"],
				total_groups=stats["total_groups"],
				active_groups=stats["active_groups"],
				groups_with_members=stats["groups_with_members"],
				engagement_rate=engagement_rate(stats["posts_with_interest"], stats["total_posts"]),
			),
			posts_by_type=stats["posts_by_type"],
			groups_by_type=stats["groups_by_type"],
			interests_by_status=dto.InterestCounts(**interest_counts),
			recent_activity=dto.AnalyticsRecentActivity(
				days=RECENT_ACTIVITY_DAYS,
				posts=stats["recent_posts"],
				groups=stats["recent_groups"],
			),
		)
