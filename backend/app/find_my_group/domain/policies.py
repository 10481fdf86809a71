"""Authorization predicates for need posts and the groups formed from them.

Predicates never mutate state. The `assert_*` helpers raise the matching
domain error so services can guard an operation in one line.
"""

from __future__ import annotations

from uuid import UUID

from app.find_my_group.domain import models
from app.find_my_group.domain.exceptions import ForbiddenError, InvalidIdentifierError, InvalidOperationError
from app.infra.auth import AuthenticatedUser


def actor_id(user: AuthenticatedUser) -> UUID:
	"""The caller's id as a UUID; every stored user reference is one."""
	try:
		return UUID(str(user.id))
	except ValueError as exc:
		raise InvalidIdentifierError() from exc


def is_creator(user: AuthenticatedUser, post: models.NeedPost) -> bool:
	return str(post.created_by) == str(user.id)


def is_admin(user: AuthenticatedUser) -> bool:
	return user.is_admin


def can_view_interest_details(user: AuthenticatedUser, post: models.NeedPost) -> bool:
	# Admins only get a view-only badge, never the contact list
	return is_creator(user, post)


def can_express_interest(
	user: AuthenticatedUser,
	post: models.NeedPost,
	*,
	admins_allowed: bool = False,
) -> bool:
	if is_creator(user, post) or not post.is_open:
		return False
	return admins_allowed or not is_admin(user)


def can_manage_group(user: AuthenticatedUser, post: models.NeedPost) -> bool:
	return is_creator(user, post)


def can_view_group(user: AuthenticatedUser, group: models.Group, *, is_member: bool) -> bool:
	if group.visibility == "public":
		return True
	return is_member or str(group.created_by) == str(user.id) or is_admin(user)


def assert_creator(user: AuthenticatedUser, post: models.NeedPost, detail: str = "creator_required") -> None:
	if not is_creator(user, post):
		raise ForbiddenError(detail)


def assert_can_manage_group(user: AuthenticatedUser, post: models.NeedPost) -> None:
	if not can_manage_group(user, post):
		raise ForbiddenError("creator_required")


def assert_not_admin(user: AuthenticatedUser, *, admins_allowed: bool = False) -> None:
	if is_admin(user) and not admins_allowed:
		raise ForbiddenError("admin_not_allowed")


def assert_not_creator(user: AuthenticatedUser, post: models.NeedPost) -> None:
	if is_creator(user, post):
		raise InvalidOperationError("own_post")


def assert_can_view_group(user: AuthenticatedUser, group: models.Group, *, is_member: bool) -> None:
	if not can_view_group(user, group, is_member=is_member):
		raise ForbiddenError("group_not_visible")
