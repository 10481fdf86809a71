"""Async repository helpers for need posts, interests, and groups."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Iterable, Sequence
from uuid import UUID

import asyncpg

from app.find_my_group.domain import models
from app.find_my_group.domain.exceptions import AlreadyExpressedError
from app.infra.postgres import get_pool


def _like_pattern(term: str) -> str:
	escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
	return f"%{escaped}%"


class FindMyGroupRepository:
	"""Thin data-access layer around asyncpg.

	Every method accepts an optional `conn` so services can compose several
	calls inside one transaction; without it a pooled connection is used.
	"""

	@asynccontextmanager
	async def _connection(self, conn: asyncpg.Connection | None) -> AsyncIterator[asyncpg.Connection]:
		if conn is not None:
			yield conn
			return
		pool = await get_pool()
		async with pool.acquire() as pooled_conn:
			yield pooled_conn

	# --- Need posts -------------------------------------------------------

	async def create_post(
		self,
		*,
		title: str,
		description: str,
		details: models.StudyDetails | models.TransportDetails,
		gender_preference: str,
		max_members: int,
		created_by: UUID,
		created_by_name: str | None,
		created_by_email: str | None,
		expires_at: datetime,
		conn: asyncpg.Connection | None = None,
	) -> models.NeedPost:
		columns = models.details_to_columns(details)
		async with self._connection(conn) as connection:
			record = await connection.fetchrow(
				"""
				INSERT INTO need_post (title, description, type, subject, course_code, meeting_frequency,
					route, vehicle_type, schedule, gender_preference, max_members, created_by,
					created_by_name, created_by_email, expires_at)
				VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)
				RETURNING *
				""",
				title,
				description,
				details.type,
				columns["subject"],
				columns["course_code"],
				columns["meeting_frequency"],
				columns["route"],
				columns["vehicle_type"],
				columns["schedule"],
				gender_preference,
				max_members,
				created_by,
				created_by_name,
				created_by_email,
				expires_at,
			)
		return models.NeedPost.from_row(record)

	async def get_post(
		self,
		post_id: UUID,
		*,
		conn: asyncpg.Connection | None = None,
		for_update: bool = False,
	) -> models.NeedPost | None:
		query = "SELECT * FROM need_post WHERE id=$1"
		if for_update:
			query += " FOR UPDATE"
		async with self._connection(conn) as connection:
			record = await connection.fetchrow(query, post_id)
		return models.NeedPost.from_row(record) if record else None

	async def list_open_posts(
		self,
		*,
		now: datetime,
		kind: str | None = None,
		gender_preference: str | None = None,
		search: str | None = None,
		limit: int,
		offset: int = 0,
	) -> tuple[list[models.NeedPost], int]:
		params: list[object] = [now]
		where_clauses = ["status='open'", "expires_at > $1"]
		if kind:
			params.append(kind)
			where_clauses.append(f"type=${len(params)}")
		if gender_preference:
			params.append(gender_preference)
			where_clauses.append(f"gender_preference=${len(params)}")
		if search:
			params.append(_like_pattern(search))
			idx = len(params)
			where_clauses.append(
				"("
				+ " OR ".join(
					f"{column} ILIKE ${idx}"
					for column in ("title", "description", "subject", "course_code", "route")
				)
				+ ")"
			)
		where = " AND ".join(where_clauses)
		pool = await get_pool()
		async with pool.acquire() as conn:
			total = await conn.fetchval(f"SELECT COUNT(*) FROM need_post WHERE {where}", *params)
			rows = await conn.fetch(
				f"""
				SELECT * FROM need_post
				WHERE {where}
				ORDER BY created_at DESC, id DESC
				LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
				""",
				*params,
				limit,
				offset,
			)
		return [models.NeedPost.from_row(row) for row in rows], int(total or 0)

	async def list_posts_by_creator(self, user_id: UUID) -> list[models.NeedPost]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"SELECT * FROM need_post WHERE created_by=$1 ORDER BY created_at DESC, id DESC",
				user_id,
			)
		return [models.NeedPost.from_row(row) for row in rows]

	async def list_all_posts(
		self,
		*,
		status: str | None = None,
		kind: str | None = None,
		limit: int,
		offset: int = 0,
	) -> tuple[list[models.NeedPost], int]:
		params: list[object] = []
		where_clauses = ["TRUE"]
		if status:
			params.append(status)
			where_clauses.append(f"status=${len(params)}")
		if kind:
			params.append(kind)
			where_clauses.append(f"type=${len(params)}")
		where = " AND ".join(where_clauses)
		pool = await get_pool()
		async with pool.acquire() as conn:
			total = await conn.fetchval(f"SELECT COUNT(*) FROM need_post WHERE {where}", *params)
			rows = await conn.fetch(
				f"""
				SELECT * FROM need_post
				WHERE {where}
				ORDER BY created_at DESC, id DESC
				LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
				""",
				*params,
				limit,
				offset,
			)
		return [models.NeedPost.from_row(row) for row in rows], int(total or 0)

	async def transition_post_status(
		self,
		post_id: UUID,
		*,
		to_status: str,
		from_status: str = "open",
		conn: asyncpg.Connection | None = None,
	) -> models.NeedPost | None:
		"""Move a post between statuses; returns None when it was not in `from_status`."""
		async with self._connection(conn) as connection:
			record = await connection.fetchrow(
				"""
				UPDATE need_post
				SET status=$2, updated_at=NOW()
				WHERE id=$1 AND status=$3
				RETURNING *
				""",
				post_id,
				to_status,
				from_status,
			)
		return models.NeedPost.from_row(record) if record else None

	# --- Interest expressions ---------------------------------------------

	async def create_interest(
		self,
		*,
		post_id: UUID,
		user_id: UUID,
		name: str | None,
		email: str | None,
		message: str,
		conn: asyncpg.Connection | None = None,
	) -> models.InterestExpression:
		async with self._connection(conn) as connection:
			try:
				record = await connection.fetchrow(
					"""
					INSERT INTO need_post_interest (post_id, user_id, name, email, message)
					VALUES ($1, $2, $3, $4, $5)
					RETURNING *
					""",
					post_id,
					user_id,
					name,
					email,
					message,
				)
			except asyncpg.UniqueViolationError as exc:  # type: ignore[attr-defined]
				raise AlreadyExpressedError() from exc
		return models.InterestExpression.model_validate(dict(record))

	async def get_interest(
		self,
		post_id: UUID,
		user_id: UUID,
		*,
		conn: asyncpg.Connection | None = None,
	) -> models.InterestExpression | None:
		async with self._connection(conn) as connection:
			record = await connection.fetchrow(
				"SELECT * FROM need_post_interest WHERE post_id=$1 AND user_id=$2",
				post_id,
				user_id,
			)
		return models.InterestExpression.model_validate(dict(record)) if record else None

	async def list_interests(
		self,
		post_id: UUID,
		*,
		status: str | None = None,
		conn: asyncpg.Connection | None = None,
	) -> list[models.InterestExpression]:
		query = "SELECT * FROM need_post_interest WHERE post_id=$1"
		params: list[object] = [post_id]
		if status:
			params.append(status)
			query += " AND status=$2"
		query += " ORDER BY created_at ASC, id ASC"
		async with self._connection(conn) as connection:
			rows = await connection.fetch(query, *params)
		return [models.InterestExpression.model_validate(dict(row)) for row in rows]

	async def count_interests(
		self,
		post_id: UUID,
		*,
		conn: asyncpg.Connection | None = None,
	) -> dict[str, int]:
		async with self._connection(conn) as connection:
			rows = await connection.fetch(
				"SELECT status, COUNT(*) AS total FROM need_post_interest WHERE post_id=$1 GROUP BY status",
				post_id,
			)
		counts = {status: 0 for status in models.INTEREST_STATUSES}
		for row in rows:
			counts[row["status"]] = int(row["total"])
		return counts

	async def get_interests_for_users(
		self,
		post_id: UUID,
		user_ids: Sequence[UUID],
		*,
		conn: asyncpg.Connection,
		for_update: bool = False,
	) -> dict[UUID, models.InterestExpression]:
		query = "SELECT * FROM need_post_interest WHERE post_id=$1 AND user_id = ANY($2::uuid[])"
		if for_update:
			query += " FOR UPDATE"
		rows = await conn.fetch(query, post_id, list(user_ids))
		interests = [models.InterestExpression.model_validate(dict(row)) for row in rows]
		return {item.user_id: item for item in interests}

	async def transition_interests(
		self,
		post_id: UUID,
		user_ids: Sequence[UUID],
		*,
		to_status: str,
		reviewed_by: UUID,
		from_status: str = "pending",
		conn: asyncpg.Connection,
	) -> list[models.InterestExpression]:
		"""Conditionally move interests out of `from_status`; returns the rows that moved."""
		rows = await conn.fetch(
			"""
			UPDATE need_post_interest
			SET status=$3, reviewed_by=$4, reviewed_at=NOW()
			WHERE post_id=$1 AND user_id = ANY($2::uuid[]) AND status=$5
			RETURNING *
			""",
			post_id,
			list(user_ids),
			to_status,
			reviewed_by,
			from_status,
		)
		return [models.InterestExpression.model_validate(dict(row)) for row in rows]

	# --- Groups -----------------------------------------------------------

	async def _attach_members(
		self,
		connection: asyncpg.Connection,
		records: Iterable[asyncpg.Record],
	) -> list[models.Group]:
		groups = [models.Group.model_validate(dict(record)) for record in records]
		if not groups:
			return groups
		rows = await connection.fetch(
			"SELECT * FROM find_group_member WHERE group_id = ANY($1::uuid[]) ORDER BY position ASC",
			[group.id for group in groups],
		)
		by_group: dict[UUID, list[models.GroupMember]] = {group.id: [] for group in groups}
		for row in rows:
			member = models.GroupMember.model_validate(dict(row))
			by_group[member.group_id].append(member)
		for group in groups:
			group.members = by_group[group.id]
		return groups

	async def create_group(
		self,
		*,
		post_id: UUID,
		name: str,
		description: str,
		kind: str,
		visibility: str,
		max_members: int,
		created_by: UUID,
		conn: asyncpg.Connection,
	) -> models.Group | None:
		"""Insert the group for a post; returns None when one already exists."""
		record = await conn.fetchrow(
			"""
			INSERT INTO find_group (created_from_post, name, description, kind, visibility, max_members, created_by)
			VALUES ($1, $2, $3, $4, $5, $6, $7)
			ON CONFLICT (created_from_post) DO NOTHING
			RETURNING *
			""",
			post_id,
			name,
			description,
			kind,
			visibility,
			max_members,
			created_by,
		)
		if not record:
			return None
		return models.Group.model_validate(dict(record))

	async def get_group(
		self,
		group_id: UUID,
		*,
		conn: asyncpg.Connection | None = None,
		for_update: bool = False,
	) -> models.Group | None:
		query = "SELECT * FROM find_group WHERE id=$1"
		if for_update:
			query += " FOR UPDATE"
		async with self._connection(conn) as connection:
			record = await connection.fetchrow(query, group_id)
			if not record:
				return None
			groups = await self._attach_members(connection, [record])
		return groups[0]

	async def get_group_for_post(
		self,
		post_id: UUID,
		*,
		conn: asyncpg.Connection | None = None,
	) -> models.Group | None:
		async with self._connection(conn) as connection:
			record = await connection.fetchrow(
				"SELECT * FROM find_group WHERE created_from_post=$1",
				post_id,
			)
			if not record:
				return None
			groups = await self._attach_members(connection, [record])
		return groups[0]

	async def list_groups_for_user(self, user_id: UUID) -> list[models.Group]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			records = await conn.fetch(
				"""
				SELECT g.* FROM find_group g
				WHERE g.created_by=$1
					OR EXISTS (
						SELECT 1 FROM find_group_member m WHERE m.group_id = g.id AND m.user_id=$1
					)
				ORDER BY g.created_at DESC, g.id DESC
				""",
				user_id,
			)
			return await self._attach_members(conn, records)

	async def list_groups(
		self,
		*,
		viewer_id: UUID | None = None,
		status: str | None = None,
		kind: str | None = None,
		visibility: str | None = None,
		search: str | None = None,
		limit: int,
		offset: int = 0,
	) -> tuple[list[models.Group], int]:
		"""Page through groups, newest first.

		With `viewer_id` set, private groups are only listed for their creator
		and members.
		"""
		params: list[object] = []
		where_clauses = ["TRUE"]
		if status:
			params.append(status)
			where_clauses.append(f"g.status=${len(params)}")
		if kind:
			params.append(kind)
			where_clauses.append(f"g.kind=${len(params)}")
		if visibility:
			params.append(visibility)
			where_clauses.append(f"g.visibility=${len(params)}")
		if viewer_id is not None:
			params.append(viewer_id)
			idx = len(params)
			where_clauses.append(
				f"(g.visibility='public' OR g.created_by=${idx} OR EXISTS ("
				f"SELECT 1 FROM find_group_member m WHERE m.group_id = g.id AND m.user_id=${idx}))"
			)
		if search:
			params.append(_like_pattern(search))
			idx = len(params)
			where_clauses.append(
				"("
				+ " OR ".join(
					f"{column} ILIKE ${idx}"
					for column in ("g.name", "g.description", "p.subject", "p.course_code", "p.route")
				)
				+ ")"
			)
		where = " AND ".join(where_clauses)
		source = "find_group g JOIN need_post p ON p.id = g.created_from_post"
		pool = await get_pool()
		async with pool.acquire() as conn:
			total = await conn.fetchval(f"SELECT COUNT(*) FROM {source} WHERE {where}", *params)
			records = await conn.fetch(
				f"""
				SELECT g.* FROM {source}
				WHERE {where}
				ORDER BY g.created_at DESC, g.id DESC
				LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
				""",
				*params,
				limit,
				offset,
			)
			groups = await self._attach_members(conn, records)
		return groups, int(total or 0)

	async def set_group_status(
		self,
		group_id: UUID,
		*,
		to_status: str,
		conn: asyncpg.Connection,
	) -> models.Group | None:
		"""Set the status unless it already holds; returns None when nothing changed."""
		record = await conn.fetchrow(
			"""
			UPDATE find_group
			SET status=$2, updated_at=NOW()
			WHERE id=$1 AND status <> $2
			RETURNING *
			""",
			group_id,
			to_status,
		)
		if not record:
			return None
		groups = await self._attach_members(conn, [record])
		return groups[0]

	async def add_members(
		self,
		group_id: UUID,
		user_ids: Sequence[UUID],
		*,
		conn: asyncpg.Connection,
	) -> list[models.GroupMember]:
		"""Append members only if the group still has room for the whole batch.

		The capacity check and the insert are one statement evaluated against the
		latest committed member count. An empty result means the batch did not fit.
		"""
		rows = await conn.fetch(
			"""
			INSERT INTO find_group_member (group_id, user_id)
			SELECT $1, t.user_id
			FROM unnest($2::uuid[]) WITH ORDINALITY AS t(user_id, ord)
			WHERE (SELECT COUNT(*) FROM find_group_member WHERE group_id=$1) + cardinality($2::uuid[])
				<= (SELECT max_members FROM find_group WHERE id=$1)
			ORDER BY t.ord
			RETURNING *
			""",
			group_id,
			list(user_ids),
		)
		members = [models.GroupMember.model_validate(dict(row)) for row in rows]
		members.sort(key=lambda member: member.position)
		return members

	async def count_members(self, group_id: UUID, *, conn: asyncpg.Connection | None = None) -> int:
		async with self._connection(conn) as connection:
			total = await connection.fetchval(
				"SELECT COUNT(*) FROM find_group_member WHERE group_id=$1",
				group_id,
			)
		return int(total or 0)

	async def remove_member(self, group_id: UUID, user_id: UUID, *, conn: asyncpg.Connection) -> bool:
		result = await conn.execute(
			"DELETE FROM find_group_member WHERE group_id=$1 AND user_id=$2",
			group_id,
			user_id,
		)
		return result.endswith(" 1")

	# --- Analytics --------------------------------------------------------

	async def collect_analytics(self, *, now: datetime, since: datetime) -> dict[str, Any]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			overview = await conn.fetchrow(
				"""
				SELECT
					(SELECT COUNT(*) FROM need_post) AS total_posts,
					(SELECT COUNT(*) FROM need_post WHERE status='open' AND expires_at > $1) AS open_posts,
					(SELECT COUNT(*) FROM need_post WHERE created_at >= $2) AS recent_posts,
					(SELECT COUNT(DISTINCT post_id) FROM need_post_interest) AS posts_with_interest,
					(SELECT COUNT(*) FROM find_group) AS total_groups,
					(SELECT COUNT(*) FROM find_group WHERE status='active') AS active_groups,
					(SELECT COUNT(*) FROM find_group WHERE created_at >= $2) AS recent_groups,
					(SELECT COUNT(DISTINCT group_id) FROM find_group_member) AS groups_with_members
				""",
				now,
				since,
			)
			posts_by_type = await conn.fetch("SELECT type AS key, COUNT(*) AS total FROM need_post GROUP BY type")
			groups_by_type = await conn.fetch("SELECT kind AS key, COUNT(*) AS total FROM find_group GROUP BY kind")
			interests_by_status = await conn.fetch(
				"SELECT status AS key, COUNT(*) AS total FROM need_post_interest GROUP BY status"
			)
		analytics: dict[str, Any] = {key: int(value or 0) for key, value in dict(overview).items()}
		analytics["posts_by_type"] = {row["key"]: int(row["total"]) for row in posts_by_type}
		analytics["groups_by_type"] = {row["key"]: int(row["total"]) for row in groups_by_type}
		analytics["interests_by_status"] = {row["key"]: int(row["total"]) for row in interests_by_status}
		return analytics

	# --- Audit ------------------------------------------------------------

	async def record_audit_event(
		self,
		*,
		post_id: UUID,
		user_id: UUID,
		action: str,
		group_id: UUID | None = None,
		details: dict | None = None,
		conn: asyncpg.Connection | None = None,
	) -> models.GroupAuditEvent:
		async with self._connection(conn) as connection:
			record = await connection.fetchrow(
				"""
				INSERT INTO find_group_audit (post_id, group_id, user_id, action, details)
				VALUES ($1, $2, $3, $4, $5)
				RETURNING *
				""",
				post_id,
				group_id,
				user_id,
				action,
				details,
			)
		return models.GroupAuditEvent.model_validate(dict(record))

	async def list_audit_events(self, post_id: UUID, *, limit: int = 50) -> list[models.GroupAuditEvent]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"SELECT * FROM find_group_audit WHERE post_id=$1 ORDER BY created_at DESC, id DESC LIMIT $2",
				post_id,
				limit,
			)
		return [models.GroupAuditEvent.model_validate(dict(row)) for row in rows]
