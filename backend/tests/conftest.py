from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from itertools import count
from pathlib import Path
from typing import Sequence
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from app.find_my_group.domain import models
from app.find_my_group.domain.exceptions import AlreadyExpressedError
from app.infra import postgres
from app.infra.auth import AuthenticatedUser
from app.main import app
from app.settings import settings
@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from app.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	API tests authenticate via X-User-Id headers, which are only accepted in
	dev mode. Workflow knobs are reset to their defaults for every test.
	"""
	original = {
		"environment": settings.environment,
		"group_auto_add_creator": settings.group_auto_add_creator,
		"post_fulfill_when_group_full": settings.post_fulfill_when_group_full,
		"admins_may_express_interest": settings.admins_may_express_interest,
		"interest_rate_limit": settings.interest_rate_limit,
		"post_create_rate_limit": settings.post_create_rate_limit,
	}
	settings.environment = "dev"
	settings.group_auto_add_creator = False
	settings.post_fulfill_when_group_full = True
	settings.admins_may_express_interest = False
	settings.interest_rate_limit = 30
	settings.post_create_rate_limit = 10
	try:
		yield
	finally:
		for key, value in original.items():
			setattr(settings, key, value)


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client


class _FakeTransaction:
	"""Restores the repository's state when the block raises, like a rollback."""

	def __init__(self, repo) -> None:
		self._repo = repo
		self._saved = None

	async def __aenter__(self):
		if self._repo is not None:
			self._saved = self._repo.snapshot()
		return None

	async def __aexit__(self, exc_type, exc, tb):
		if exc_type is not None and self._saved is not None:
			self._repo.restore(self._saved)
		return False


class _FakeAcquire:
	def __init__(self, conn):
		self._conn = conn

	async def __aenter__(self):
		return self._conn

	async def __aexit__(self, exc_type, exc, tb):
		return False


class _FakeConnection:
	def __init__(self, repo=None) -> None:
		self.transactions = 0
		self._repo = repo

	def transaction(self):
		self.transactions += 1
		return _FakeTransaction(self._repo)


class _FakePool:
	def __init__(self, conn):
		self._conn = conn

	def acquire(self):
		return _FakeAcquire(self._conn)


class FakeRepo:
	"""In-memory stand-in for FindMyGroupRepository with the same semantics."""

	def __init__(self) -> None:
		self.posts: dict[UUID, models.NeedPost] = {}
		self.interests: dict[tuple[UUID, UUID], models.InterestExpression] = {}
		self.groups: dict[UUID, models.Group] = {}
		self.audit: list[models.GroupAuditEvent] = []
		self._positions = count(1)
		self._audit_ids = count(1)

	# --- helpers ---------------------------------------------------------

	def snapshot(self):
		return (
			dict(self.posts),
			dict(self.interests),
			{group_id: group.model_copy(deep=True) for group_id, group in self.groups.items()},
			list(self.audit),
		)

	def restore(self, saved) -> None:
		posts, interests, groups, audit = saved
		self.posts = dict(posts)
		self.interests = dict(interests)
		self.groups = {group_id: group.model_copy(deep=True) for group_id, group in groups.items()}
		self.audit = list(audit)

	def add_post(
		self,
		created_by: UUID,
		*,
		kind: str = "study",
		status: str = "open",
		max_members: int = 4,
		title: str = "Linear algebra study group",
		expires_in: timedelta = timedelta(days=30),
	) -> models.NeedPost:
		now = datetime.now(timezone.utc)
		details = (
			models.StudyDetails(subject="Math", course_code="MAT120", meeting_frequency="weekly")
			if kind == "study"
			else models.TransportDetails(route="Mohakhali to Uttara", vehicle_type="car", schedule="weekdays")
		)
		post = models.NeedPost(
			id=uuid4(),
			title=title,
			description="Looking for people",
			details=details,
			gender_preference="any",
			max_members=max_members,
			status=status,
			created_by=created_by,
			created_by_name="Alice",
			created_by_email="alice@example.edu",
			expires_at=now + expires_in,
			created_at=now,
			updated_at=now,
		)
		self.posts[post.id] = post
		return post

	def add_interest(self, post_id: UUID, user_id: UUID, *, status: str = "pending") -> models.InterestExpression:
		interest = models.InterestExpression(
			id=uuid4(),
			post_id=post_id,
			user_id=user_id,
			name="Student",
			email="student@example.edu",
			message="I'm in",
			status=status,
			created_at=datetime.now(timezone.utc),
		)
		self.interests[(post_id, user_id)] = interest
		return interest

	def add_group(
		self,
		post: models.NeedPost,
		*,
		members: Sequence[UUID] = (),
		status: str = "active",
		name: str = "Group",
	) -> models.Group:
		now = datetime.now(timezone.utc)
		group = models.Group(
			id=uuid4(),
			created_from_post=post.id,
			name=name,
			description="",
			kind=post.type,
			visibility=models.visibility_for_kind(post.type),
			max_members=post.max_members,
			status=status,
			created_by=post.created_by,
			created_at=now,
			updated_at=now,
			members=[self._member(uuid4(), user_id) for user_id in members],
		)
		group.members = [member.model_copy(update={"group_id": group.id}) for member in group.members]
		self.groups[group.id] = group
		return group

	def _member(self, group_id: UUID, user_id: UUID) -> models.GroupMember:
		return models.GroupMember(
			group_id=group_id,
			user_id=user_id,
			position=next(self._positions),
			joined_at=datetime.now(timezone.utc),
		)

	# --- posts -----------------------------------------------------------

	async def create_post(self, *, details, conn=None, **fields) -> models.NeedPost:
		now = datetime.now(timezone.utc)
		post = models.NeedPost(id=uuid4(), details=details, status="open", created_at=now, updated_at=now, **fields)
		self.posts[post.id] = post
		return post

	async def get_post(self, post_id: UUID, *, conn=None, for_update: bool = False):
		return self.posts.get(post_id)

	async def list_open_posts(self, *, now, kind=None, gender_preference=None, search=None, limit, offset=0):
		items = [post for post in self.posts.values() if post.status == "open" and post.expires_at > now]
		if kind:
			items = [post for post in items if post.type == kind]
		if gender_preference:
			items = [post for post in items if post.gender_preference == gender_preference]
		if search:
			needle = search.lower()
			items = [post for post in items if needle in f"{post.title} {post.description}".lower()]
		items.sort(key=lambda post: post.created_at, reverse=True)
		return items[offset : offset + limit], len(items)

	async def list_posts_by_creator(self, user_id: UUID):
		return [post for post in self.posts.values() if post.created_by == user_id]

	async def list_all_posts(self, *, status=None, kind=None, limit, offset=0):
		items = [post for post in self.posts.values() if (not status or post.status == status)]
		if kind:
			items = [post for post in items if post.type == kind]
		return items[offset : offset + limit], len(items)

	async def transition_post_status(self, post_id: UUID, *, to_status: str, from_status: str = "open", conn=None):
		post = self.posts.get(post_id)
		if post is None or post.status != from_status:
			return None
		updated = post.model_copy(update={"status": to_status, "updated_at": datetime.now(timezone.utc)})
		self.posts[post_id] = updated
		return updated

	# --- interests -------------------------------------------------------

	async def create_interest(self, *, post_id, user_id, name, email, message, conn=None):
		if (post_id, user_id) in self.interests:
			raise AlreadyExpressedError()
		interest = models.InterestExpression(
			id=uuid4(),
			post_id=post_id,
			user_id=user_id,
			name=name,
			email=email,
			message=message,
			status="pending",
			created_at=datetime.now(timezone.utc),
		)
		self.interests[(post_id, user_id)] = interest
		return interest

	async def get_interest(self, post_id: UUID, user_id: UUID, *, conn=None):
		return self.interests.get((post_id, user_id))

	async def list_interests(self, post_id: UUID, *, status=None, conn=None):
		items = [item for (pid, _), item in self.interests.items() if pid == post_id]
		if status:
			items = [item for item in items if item.status == status]
		return sorted(items, key=lambda item: item.created_at)

	async def count_interests(self, post_id: UUID, *, conn=None):
		counts = {status: 0 for status in models.INTEREST_STATUSES}
		for (pid, _), item in self.interests.items():
			if pid == post_id:
				counts[item.status] += 1
		return counts

	async def get_interests_for_users(self, post_id, user_ids, *, conn, for_update=False):
		return {uid: self.interests[(post_id, uid)] for uid in user_ids if (post_id, uid) in self.interests}

	async def transition_interests(self, post_id, user_ids, *, to_status, reviewed_by, from_status="pending", conn):
		moved = []
		for uid in user_ids:
			current = self.interests.get((post_id, uid))
			if current is None or current.status != from_status:
				continue
			updated = current.model_copy(
				update={"status": to_status, "reviewed_by": reviewed_by, "reviewed_at": datetime.now(timezone.utc)}
			)
			self.interests[(post_id, uid)] = updated
			moved.append(updated)
		return moved

	# --- groups ----------------------------------------------------------

	async def create_group(self, *, post_id, name, description, kind, visibility, max_members, created_by, conn):
		if any(group.created_from_post == post_id for group in self.groups.values()):
			return None
		now = datetime.now(timezone.utc)
		group = models.Group(
			id=uuid4(),
			created_from_post=post_id,
			name=name,
			description=description,
			kind=kind,
			visibility=visibility,
			max_members=max_members,
			created_by=created_by,
			created_at=now,
			updated_at=now,
		)
		self.groups[group.id] = group
		return group.model_copy(deep=True)

	async def get_group(self, group_id: UUID, *, conn=None, for_update: bool = False):
		group = self.groups.get(group_id)
		return group.model_copy(deep=True) if group else None

	async def get_group_for_post(self, post_id: UUID, *, conn=None):
		for group in self.groups.values():
			if group.created_from_post == post_id:
				return group.model_copy(deep=True)
		return None

	async def list_groups_for_user(self, user_id: UUID):
		return [
			group.model_copy(deep=True)
			for group in self.groups.values()
			if group.created_by == user_id or group.has_member(user_id)
		]

	async def add_members(self, group_id: UUID, user_ids, *, conn):
		group = self.groups[group_id]
		if len(group.members) + len(user_ids) > group.max_members:
			return []
		added = [self._member(group_id, uid) for uid in user_ids]
		group.members.extend(added)
		return added

	async def count_members(self, group_id: UUID, *, conn=None):
		return len(self.groups[group_id].members)

	async def list_groups(
		self,
		*,
		viewer_id=None,
		status=None,
		kind=None,
		visibility=None,
		search=None,
		limit,
		offset=0,
	):
		items = list(self.groups.values())
		if status:
			items = [group for group in items if group.status == status]
		if kind:
			items = [group for group in items if group.kind == kind]
		if visibility:
			items = [group for group in items if group.visibility == visibility]
		if viewer_id is not None:
			items = [
				group
				for group in items
				if group.visibility == "public" or group.created_by == viewer_id or group.has_member(viewer_id)
			]
		if search:
			needle = search.lower()

			def _haystack(group: models.Group) -> str:
				post = self.posts[group.created_from_post]
				fields = (getattr(post.details, name, None) for name in ("subject", "course_code", "route"))
				return " ".join([group.name, group.description, *(value or "" for value in fields)]).lower()

			items = [group for group in items if needle in _haystack(group)]
		items.sort(key=lambda group: group.created_at, reverse=True)
		return [group.model_copy(deep=True) for group in items[offset : offset + limit]], len(items)

	async def set_group_status(self, group_id: UUID, *, to_status: str, conn):
		group = self.groups.get(group_id)
		if group is None or group.status == to_status:
			return None
		updated = group.model_copy(update={"status": to_status, "updated_at": datetime.now(timezone.utc)}, deep=True)
		self.groups[group_id] = updated
		return updated.model_copy(deep=True)

	async def remove_member(self, group_id: UUID, user_id: UUID, *, conn):
		group = self.groups[group_id]
		before = len(group.members)
		group.members = [member for member in group.members if member.user_id != user_id]
		return len(group.members) < before

	async def collect_analytics(self, *, now, since):
		posts = list(self.posts.values())
		groups = list(self.groups.values())
		interests = list(self.interests.values())
		by_status: dict[str, int] = {}
		for interest in interests:
			by_status[interest.status] = by_status.get(interest.status, 0) + 1
		posts_by_type: dict[str, int] = {}
		for post in posts:
			posts_by_type[post.type] = posts_by_type.get(post.type, 0) + 1
		groups_by_type: dict[str, int] = {}
		for group in groups:
			groups_by_type[group.kind] = groups_by_type.get(group.kind, 0) + 1
		return {
			"total_posts": len(posts),
			"open_posts": sum(1 for post in posts if post.status == "open" and post.expires_at > now),
			"recent_posts": sum(1 for post in posts if post.created_at >= since),
			"posts_with_interest": len({interest.post_id for interest in interests}),
			"total_groups": len(groups),
			"active_groups": sum(1 for group in groups if group.status == "active"),
			"recent_groups": sum(1 for group in groups if group.created_at >= since),
			"groups_with_members": sum(1 for group in groups if group.members),
			"posts_by_type": posts_by_type,
			"groups_by_type": groups_by_type,
			"interests_by_status": by_status,
		}

	# --- audit -----------------------------------------------------------

	async def record_audit_event(self, *, post_id, user_id, action, group_id=None, details=None, conn=None):
		event = models.GroupAuditEvent(
			id=next(self._audit_ids),
			post_id=post_id,
			group_id=group_id,
			user_id=user_id,
			action=action,
			details=details,
			created_at=datetime.now(timezone.utc),
		)
		self.audit.append(event)
		return event

	async def list_audit_events(self, post_id: UUID, *, limit: int = 50):
		return [event for event in reversed(self.audit) if event.post_id == post_id][:limit]


def _user(user_id: UUID | None = None, *, roles: tuple[str, ...] = (), name: str = "Student") -> AuthenticatedUser:
	uid = user_id or uuid4()
	return AuthenticatedUser(id=str(uid), display_name=name, email=f"{name.lower()}@example.edu", roles=roles)


@pytest.fixture
def make_user():
	return _user


@pytest.fixture
def alice() -> AuthenticatedUser:
	return _user(name="Alice")


@pytest.fixture
def bob() -> AuthenticatedUser:
	return _user(name="Bob")


@pytest.fixture
def carol() -> AuthenticatedUser:
	return _user(name="Carol")


@pytest.fixture
def admin() -> AuthenticatedUser:
	return _user(name="Admin", roles=("admin",))


@pytest.fixture
def repo() -> FakeRepo:
	return FakeRepo()


@pytest.fixture
def fake_pool(monkeypatch, repo):
	connection = _FakeConnection(repo)
	pool = _FakePool(connection)

	async def _get_pool():
		return pool

	monkeypatch.setattr("app.find_my_group.domain.posts_service.get_pool", _get_pool)
	monkeypatch.setattr("app.find_my_group.domain.interests_service.get_pool", _get_pool)
	monkeypatch.setattr("app.find_my_group.domain.formation_service.get_pool", _get_pool)
	monkeypatch.setattr("app.find_my_group.domain.moderation_service.get_pool", _get_pool)
	return pool


@pytest.fixture
def wired_api(monkeypatch, repo, fake_pool):
	"""Point the router-level services at the in-memory repository."""
	from app.find_my_group.api import admin, groups, interests, posts

	services = (
		posts._service,
		interests._service,
		interests._formation,
		groups._service,
		admin._service,
		admin._moderation,
	)
	for service in services:
		monkeypatch.setattr(service, "repo", repo)
	return repo
