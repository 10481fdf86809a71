"""Interest ledger: recording and reading interest expressions on need posts."""

from __future__ import annotations

import logging
from uuid import UUID

from app.find_my_group.domain import models, policies, repo as repo_module
from app.find_my_group.domain.exceptions import (
	AlreadyExpressedError,
	GroupFormationError,
	InvalidStateError,
	NotFoundError,
	ValidationError,
)
from app.find_my_group.domain.posts_service import can_receive_interest
from app.find_my_group.schemas import dto
from app.infra import rate_limit
from app.infra.auth import AuthenticatedUser
from app.infra.postgres import get_pool
from app.obs import metrics as obs_metrics
from app.settings import settings

LOGGER = logging.getLogger(__name__)


def interest_response(interest: models.InterestExpression) -> dto.InterestResponse:
	return dto.InterestResponse.model_validate(interest, from_attributes=True)


class InterestsService:
	"""Records interest expressions and enforces one expression per user and post."""

	def __init__(self, repository: repo_module.FindMyGroupRepository | None = None) -> None:
		self.repo = repository or repo_module.FindMyGroupRepository()

	async def express_interest(
		self,
		user: AuthenticatedUser,
		post_id: UUID,
		payload: dto.InterestCreateRequest,
	) -> dto.InterestResponse:
		"""Record a pending interest expression for the caller.

		Checks run in a fixed order: the post must exist, the message must be
		non-blank, an existing expression wins over every other failure, then
		the post must be open, and finally admins and the creator are turned
		away. A duplicate that slips past the read is caught by the unique
		index and reported the same way. The per-user rate limit is charged
		only for expressions that were actually recorded.
		"""
		try:
			interest = await self._express(user, post_id, payload)
		except GroupFormationError as exc:
			obs_metrics.inc_interest_expressed(exc.detail)
			raise
		except rate_limit.RateLimitExceeded:
			obs_metrics.inc_interest_expressed("rate_limited")
			raise
		obs_metrics.inc_interest_expressed("created")
		LOGGER.info("interest_expressed", extra={"post_id": str(post_id), "interest_id": str(interest.id)})
		return interest_response(interest)

	async def _express(
		self,
		user: AuthenticatedUser,
		post_id: UUID,
		payload: dto.InterestCreateRequest,
	) -> models.InterestExpression:
		user_id = policies.actor_id(user)
		post = await self.repo.get_post(post_id)
		if post is None:
			raise NotFoundError("post_not_found")
		message = payload.message.strip()
		if not message:
			raise ValidationError("message_required")
		existing = await self.repo.get_interest(post_id, user_id)
		if existing is not None:
			raise AlreadyExpressedError(status=existing.status)
		if not can_receive_interest(post):
			raise InvalidStateError("post_not_open", status=post.status)
		policies.assert_not_admin(user, admins_allowed=settings.admins_may_express_interest)
		policies.assert_not_creator(user, post)
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				# The post row lock orders this insert against close_post
				locked = await self.repo.get_post(post_id, conn=conn, for_update=True)
				if locked is None:
					raise NotFoundError("post_not_found")
				if not can_receive_interest(locked):
					raise InvalidStateError("post_not_open", status=locked.status)
				interest = await self.repo.create_interest(
					post_id=post_id,
					user_id=user_id,
					name=user.display_name,
					email=user.email,
					message=message,
					conn=conn,
				)
				# Only an accepted insert is charged; over the limit the insert rolls back
				await rate_limit.enforce("interest_express", str(user_id), limit=settings.interest_rate_limit)
				await self.repo.record_audit_event(
					post_id=post_id,
					user_id=user_id,
					action="interest.express",
					details={"interest_id": str(interest.id)},
					conn=conn,
				)
		return interest

	async def list_by_post(
		self,
		user: AuthenticatedUser,
		post_id: UUID,
		*,
		status: str | None = None,
	) -> dto.InterestListResponse:
		"""List interests on a post; contact details are for the creator only."""
		post = await self.repo.get_post(post_id)
		if post is None:
			raise NotFoundError("post_not_found")
		counts = await self.repo.count_interests(post_id)
		total = sum(counts.values())
		if not policies.can_view_interest_details(user, post):
			return dto.InterestListResponse(items=[], total=total, counts=None, restricted=True)
		items = await self.repo.list_interests(post_id, status=status)
		return dto.InterestListResponse(
			items=[interest_response(item) for item in items],
			total=total,
			counts=dto.InterestCounts(**counts),
			restricted=False,
		)
