"""Domain models for Find My Group need posts, interests, and groups."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

PostStatus = Literal["open", "fulfilled", "closed"]
InterestStatus = Literal["pending", "approved", "rejected"]
GroupStatus = Literal["active", "archived"]
GenderPreference = Literal["any", "female-only", "male-only"]
MeetingFrequency = Literal["once", "weekly", "bi-weekly", "monthly", "flexible"]
VehicleType = Literal["car", "motorcycle", "bus", "rickshaw", "cng", "any"]
TransportSchedule = Literal["daily", "weekdays", "weekends", "specific-days"]

POST_STATUSES: tuple[str, ...] = ("open", "fulfilled", "closed")
INTEREST_STATUSES: tuple[str, ...] = ("pending", "approved", "rejected")
MIN_GROUP_SIZE = 2
MAX_POST_MEMBERS = 8


class StudyDetails(BaseModel):
	"""Study group specifics."""

	type: Literal["study"] = "study"
	subject: Optional[str] = Field(default=None, max_length=100)
	course_code: Optional[str] = Field(default=None, max_length=20)
	meeting_frequency: Optional[MeetingFrequency] = None


class TransportDetails(BaseModel):
	"""Shared transport specifics."""

	type: Literal["transport"] = "transport"
	route: Optional[str] = Field(default=None, max_length=200)
	vehicle_type: Optional[VehicleType] = None
	schedule: Optional[TransportSchedule] = None


PostKind = Annotated[Union[StudyDetails, TransportDetails], Field(discriminator="type")]

_DETAIL_COLUMNS = ("subject", "course_code", "meeting_frequency", "route", "vehicle_type", "schedule")


def details_from_row(row: dict[str, Any]) -> StudyDetails | TransportDetails:
	if row["type"] == "study":
		return StudyDetails(
			subject=row.get("subject"),
			course_code=row.get("course_code"),
			meeting_frequency=row.get("meeting_frequency"),
		)
	if row["type"] == "transport":
		return TransportDetails(
			route=row.get("route"),
			vehicle_type=row.get("vehicle_type"),
			schedule=row.get("schedule"),
		)
	raise ValueError(f"unknown post type {row['type']!r}")


def details_to_columns(details: StudyDetails | TransportDetails) -> dict[str, Any]:
	"""Flatten a post kind into the nullable per-kind columns."""
	columns: dict[str, Any] = {name: None for name in _DETAIL_COLUMNS}
	columns.update(details.model_dump(exclude={"type"}))
	return columns


class NeedPost(BaseModel):
	"""A request for companions for a study group or shared transport."""

	id: UUID
	title: str
	description: str
	details: PostKind
	gender_preference: GenderPreference = "any"
	max_members: int
	status: PostStatus
	created_by: UUID
	created_by_name: Optional[str] = None
	created_by_email: Optional[str] = None
	expires_at: datetime
	created_at: datetime
	updated_at: datetime

	model_config = ConfigDict(from_attributes=True)

	@property
	def type(self) -> str:
		return self.details.type

	@property
	def is_open(self) -> bool:
		return self.status == "open"

	def is_expired(self, now: datetime | None = None) -> bool:
		return self.expires_at <= (now or datetime.now(timezone.utc))

	@classmethod
	def from_row(cls, row: Any) -> "NeedPost":
		data = dict(row)
		details = details_from_row(data)
		for name in ("type", *_DETAIL_COLUMNS):
			data.pop(name, None)
		return cls(details=details, **data)


class InterestExpression(BaseModel):
	"""A candidate's declared interest in joining the group formed from a post."""

	id: UUID
	post_id: UUID
	user_id: UUID
	name: Optional[str] = None
	email: Optional[str] = None
	message: str
	status: InterestStatus
	created_at: datetime
	reviewed_by: Optional[UUID] = None
	reviewed_at: Optional[datetime] = None

	model_config = ConfigDict(from_attributes=True)


class GroupMember(BaseModel):
	"""Membership row; position gives join order within the group."""

	group_id: UUID
	user_id: UUID
	position: int
	joined_at: datetime

	model_config = ConfigDict(from_attributes=True)


class Group(BaseModel):
	"""A capacity-bounded group formed from exactly one need post."""

	id: UUID
	created_from_post: UUID
	name: str
	description: str
	kind: Literal["study", "transport"]
	visibility: Literal["public", "private"]
	max_members: int
	status: GroupStatus = "active"
	created_by: UUID
	created_at: datetime
	updated_at: datetime
	members: list[GroupMember] = Field(default_factory=list)

	model_config = ConfigDict(from_attributes=True)

	@property
	def member_count(self) -> int:
		return len(self.members)

	@property
	def is_full(self) -> bool:
		return self.member_count >= self.max_members

	def has_member(self, user_id: UUID) -> bool:
		return any(member.user_id == user_id for member in self.members)


class GroupAuditEvent(BaseModel):
	id: int
	post_id: UUID
	group_id: Optional[UUID] = None
	user_id: UUID
	action: str
	details: Optional[dict[str, Any]] = None
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)


def visibility_for_kind(kind: str) -> Literal["public", "private"]:
	"""Transport groups are private, study groups are public."""
	return "private" if kind == "transport" else "public"
