"""Group formation: creating the group for a post and admitting interested users."""

from __future__ import annotations

import logging
from typing import Sequence
from uuid import UUID

from app.find_my_group.domain import models, policies, repo as repo_module
from app.find_my_group.domain.exceptions import (
	CapacityExceededError,
	InvalidStateError,
	NotFoundError,
	ValidationError,
)
from app.find_my_group.schemas import dto
from app.infra.auth import AuthenticatedUser
from app.infra.postgres import get_pool
from app.obs import metrics as obs_metrics
from app.settings import settings

LOGGER = logging.getLogger(__name__)


def group_response(group: models.Group) -> dto.GroupResponse:
	return dto.GroupResponse(
		id=group.id,
		created_from_post=group.created_from_post,
		name=group.name,
		description=group.description,
		kind=group.kind,
		visibility=group.visibility,
		max_members=group.max_members,
		status=group.status,
		created_by=group.created_by,
		created_at=group.created_at,
		updated_at=group.updated_at,
		members=[dto.MemberResponse.model_validate(member, from_attributes=True) for member in group.members],
		member_count=group.member_count,
		is_full=group.is_full,
	)


def _unique_ids(user_ids: Sequence[UUID]) -> list[UUID]:
	seen: set[UUID] = set()
	ordered: list[UUID] = []
	for user_id in user_ids:
		if user_id not in seen:
			seen.add(user_id)
			ordered.append(user_id)
	return ordered


def _default_group_name(post: models.NeedPost) -> str:
	return f"{post.type.capitalize()} group for {post.title}"[:100]


class FormationService:
	"""Keeps the group, its members, and the interest ledger consistent."""

	def __init__(self, repository: repo_module.FindMyGroupRepository | None = None) -> None:
		self.repo = repository or repo_module.FindMyGroupRepository()

	async def _require_post(self, post_id: UUID) -> models.NeedPost:
		post = await self.repo.get_post(post_id)
		if post is None:
			raise NotFoundError("post_not_found")
		return post

	async def create_group_from_post(
		self,
		user: AuthenticatedUser,
		post_id: UUID,
		payload: dto.GroupCreateRequest,
	) -> tuple[dto.GroupResponse, bool]:
		"""Create the group for a post, or return the one that already exists.

		Returns the group and whether this call created it.
		"""
		post = await self._require_post(post_id)
		policies.assert_can_manage_group(user, post)
		user_id = policies.actor_id(user)
		created = False
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				# Concurrent creates for the same post queue up on this lock
				locked = await self.repo.get_post(post_id, conn=conn, for_update=True)
				if locked is None:
					raise NotFoundError("post_not_found")
				group = await self.repo.get_group_for_post(post_id, conn=conn)
				if group is None:
					inserted = await self.repo.create_group(
						post_id=post_id,
						name=(payload.name or "").strip() or _default_group_name(locked),
						description=(payload.description or "").strip() or locked.description,
						kind=locked.type,
						visibility=models.visibility_for_kind(locked.type),
						max_members=locked.max_members,
						created_by=user_id,
						conn=conn,
					)
					if inserted is not None:
						created = True
						if settings.group_auto_add_creator:
							await self.repo.add_members(inserted.id, [user_id], conn=conn)
						await self.repo.record_audit_event(
							post_id=post_id,
							group_id=inserted.id,
							user_id=user_id,
							action="group.create",
							details={"max_members": inserted.max_members, "visibility": inserted.visibility},
							conn=conn,
						)
					group = await self.repo.get_group_for_post(post_id, conn=conn)
		if group is None:  # pragma: no cover - insert and lookup share the transaction
			raise NotFoundError("group_not_found")
		obs_metrics.inc_group_formed("created" if created else "existing")
		LOGGER.info(
			"group_formed",
			extra={"post_id": str(post_id), "group_id": str(group.id), "was_created": created},
		)
		return group_response(group), created

	async def admit_members(
		self,
		user: AuthenticatedUser,
		group_id: UUID,
		payload: dto.AdmitMembersRequest,
	) -> dto.AdmitMembersResponse:
		"""Admit a batch of users with pending interests into the group.

		The batch is all or nothing: every new user needs a pending interest and
		the whole batch must fit under max_members. Users already in the group
		are skipped and reported as `alreadyMember`.
		"""
		user_ids = _unique_ids(payload.user_ids)
		if not user_ids:
			raise ValidationError("user_ids_required")
		group = await self.repo.get_group(group_id)
		if group is None:
			raise NotFoundError("group_not_found")
		if payload.post_id is not None and payload.post_id != group.created_from_post:
			raise InvalidStateError("group_post_mismatch")
		post = await self._require_post(group.created_from_post)
		policies.assert_can_manage_group(user, post)
		actor_id = policies.actor_id(user)
		pool = await get_pool()
		try:
			async with pool.acquire() as conn:
				async with conn.transaction():
					group, admitted = await self._admit_tx(conn, group_id, post, actor_id, user_ids)
		except CapacityExceededError:
			obs_metrics.inc_admission_rejected("capacity")
			raise
		except (NotFoundError, InvalidStateError) as exc:
			obs_metrics.inc_admission_rejected(exc.detail)
			raise
		obs_metrics.inc_members_admitted(len(admitted))
		LOGGER.info(
			"members_admitted",
			extra={"group_id": str(group_id), "admitted": len(admitted), "requested": len(user_ids)},
		)
		outcomes = [
			dto.AdmissionOutcome(user_id=uid, outcome="admitted" if uid in admitted else "alreadyMember")
			for uid in user_ids
		]
		return dto.AdmitMembersResponse(results=outcomes, group=group_response(group))

	async def _admit_tx(
		self,
		conn,
		group_id: UUID,
		post: models.NeedPost,
		actor_id: UUID,
		user_ids: list[UUID],
	) -> tuple[models.Group, set[UUID]]:
		group = await self.repo.get_group(group_id, conn=conn, for_update=True)
		if group is None:
			raise NotFoundError("group_not_found")
		if group.status != "active":
			raise InvalidStateError("group_not_active", status=group.status)
		candidates = [uid for uid in user_ids if not group.has_member(uid)]
		if not candidates:
			return group, set()
		# The creator joins without an interest of their own
		applicants = [uid for uid in candidates if uid != post.created_by]
		interests = await self.repo.get_interests_for_users(post.id, applicants, conn=conn, for_update=True)
		missing = [uid for uid in applicants if uid not in interests]
		if missing:
			raise NotFoundError("interest_not_found", user_ids=[str(uid) for uid in missing])
		not_pending = {str(uid): interests[uid].status for uid in applicants if interests[uid].status != "pending"}
		if not_pending:
			raise InvalidStateError("interest_not_pending", statuses=not_pending)
		added = await self.repo.add_members(group_id, candidates, conn=conn)
		if len(added) != len(candidates):
			current = await self.repo.count_members(group_id, conn=conn)
			raise CapacityExceededError(
				members=current,
				max_members=group.max_members,
				requested=len(candidates),
			)
		if applicants:
			approved = await self.repo.transition_interests(
				post.id,
				applicants,
				to_status="approved",
				reviewed_by=actor_id,
				conn=conn,
			)
			if len(approved) != len(applicants):
				raise InvalidStateError("interest_not_pending")
		await self.repo.record_audit_event(
			post_id=post.id,
			group_id=group_id,
			user_id=actor_id,
			action="members.admit",
			details={"user_ids": [str(uid) for uid in candidates]},
			conn=conn,
		)
		refreshed = await self.repo.get_group(group_id, conn=conn)
		assert refreshed is not None
		if refreshed.is_full and settings.post_fulfill_when_group_full:
			fulfilled = await self.repo.transition_post_status(post.id, to_status="fulfilled", conn=conn)
			if fulfilled is not None:
				obs_metrics.inc_need_post_closed("fulfilled")
		return refreshed, set(candidates)

	async def reject_interests(
		self,
		user: AuthenticatedUser,
		post_id: UUID,
		payload: dto.RejectInterestsRequest,
	) -> list[dto.InterestResponse]:
		"""Reject pending interests; the whole batch moves or none of it does."""
		user_ids = _unique_ids(payload.user_ids)
		if not user_ids:
			raise ValidationError("user_ids_required")
		post = await self._require_post(post_id)
		policies.assert_can_manage_group(user, post)
		actor_id = policies.actor_id(user)
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				interests = await self.repo.get_interests_for_users(post_id, user_ids, conn=conn, for_update=True)
				missing = [uid for uid in user_ids if uid not in interests]
				if missing:
					raise NotFoundError("interest_not_found", user_ids=[str(uid) for uid in missing])
				not_pending = {
					str(uid): interests[uid].status for uid in user_ids if interests[uid].status != "pending"
				}
				if not_pending:
					raise InvalidStateError("interest_not_pending", statuses=not_pending)
				rejected = await self.repo.transition_interests(
					post_id,
					user_ids,
					to_status="rejected",
					reviewed_by=actor_id,
					conn=conn,
				)
				if len(rejected) != len(user_ids):
					raise InvalidStateError("interest_not_pending")
				await self.repo.record_audit_event(
					post_id=post_id,
					user_id=actor_id,
					action="interests.reject",
					details={"user_ids": [str(uid) for uid in user_ids]},
					conn=conn,
				)
		obs_metrics.inc_interests_rejected(len(rejected))
		return [dto.InterestResponse.model_validate(item, from_attributes=True) for item in rejected]

	async def get_group(self, user: AuthenticatedUser, group_id: UUID) -> dto.GroupResponse:
		group = await self.repo.get_group(group_id)
		if group is None:
			raise NotFoundError("group_not_found")
		policies.assert_can_view_group(user, group, is_member=group.has_member(policies.actor_id(user)))
		return group_response(group)

	async def list_groups_for_post(self, user: AuthenticatedUser, post_id: UUID) -> list[dto.GroupResponse]:
		await self._require_post(post_id)
		group = await self.repo.get_group_for_post(post_id)
		if group is None:
			return []
		if not policies.can_view_group(user, group, is_member=group.has_member(policies.actor_id(user))):
			return []
		return [group_response(group)]

	async def list_my_groups(self, user: AuthenticatedUser) -> list[dto.GroupResponse]:
		groups = await self.repo.list_groups_for_user(policies.actor_id(user))
		return [group_response(group) for group in groups]

	async def browse_groups(
		self,
		user: AuthenticatedUser,
		*,
		kind: str | None = None,
		visibility: str | None = None,
		search: str | None = None,
		limit: int = 20,
		offset: int = 0,
	) -> dto.GroupListResponse:
		"""Active groups the caller may see; private ones only to their creator and members."""
		viewer_id = None if policies.is_admin(user) else policies.actor_id(user)
		term = search.strip() if search else None
		groups, total = await self.repo.list_groups(
			viewer_id=viewer_id,
			status="active",
			kind=kind,
			visibility=visibility,
			search=term or None,
			limit=limit,
			offset=offset,
		)
		return dto.GroupListResponse(
			items=[group_response(group) for group in groups],
			total=total,
			limit=limit,
			offset=offset,
		)

	async def leave_group(self, user: AuthenticatedUser, group_id: UUID) -> dto.LeaveGroupResponse:
		"""Remove the caller from a group.

		The creator may only leave once everyone else has; the group is then
		archived. The leaver's interest stays approved and the post status is
		left alone.
		"""
		user_id = policies.actor_id(user)
		archived = False
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				group = await self.repo.get_group(group_id, conn=conn, for_update=True)
				if group is None:
					raise NotFoundError("group_not_found")
				if not group.has_member(user_id):
					raise InvalidStateError("not_a_member")
				is_group_creator = group.created_by == user_id
				if is_group_creator and group.member_count > 1:
					raise InvalidStateError("creator_cannot_leave", members=group.member_count)
				await self.repo.remove_member(group_id, user_id, conn=conn)
				if is_group_creator:
					archived = await self.repo.set_group_status(group_id, to_status="archived", conn=conn) is not None
				await self.repo.record_audit_event(
					post_id=group.created_from_post,
					group_id=group_id,
					user_id=user_id,
					action="members.leave",
					details={"archived": archived},
					conn=conn,
				)
				remaining = await self.repo.count_members(group_id, conn=conn)
		obs_metrics.inc_member_left()
		if archived:
			obs_metrics.inc_group_status_changed("archived", "creator_left")
		LOGGER.info("group_member_left", extra={"group_id": str(group_id), "archived": archived})
		return dto.LeaveGroupResponse(
			group_id=group_id,
			member_count=remaining,
			status="archived" if archived else group.status,
		)
