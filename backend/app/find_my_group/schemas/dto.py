"""Pydantic schemas for the Find My Group API."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from app.find_my_group.domain.models import (
	MAX_POST_MEMBERS,
	MIN_GROUP_SIZE,
	GenderPreference,
	GroupStatus,
	InterestStatus,
	PostKind,
	PostStatus,
)


class NeedPostCreateRequest(BaseModel):
	title: str = Field(..., min_length=1, max_length=100)
	description: str = Field(..., min_length=1, max_length=500)
	details: PostKind
	gender_preference: GenderPreference = "any"
	max_members: int = Field(default=4, ge=MIN_GROUP_SIZE, le=MAX_POST_MEMBERS)


class NeedPostUpdateRequest(BaseModel):
	status: Literal["closed"]


class NeedPostResponse(BaseModel):
	id: UUID
	title: str
	description: str
	type: Literal["study", "transport"]
	details: PostKind
	gender_preference: GenderPreference
	max_members: int
	status: PostStatus
	created_by: UUID
	created_by_name: Optional[str] = None
	expires_at: datetime
	created_at: datetime
	updated_at: datetime


class NeedPostListResponse(BaseModel):
	items: List[NeedPostResponse]
	total: int
	limit: int
	offset: int


class InterestCreateRequest(BaseModel):
	message: str = Field(..., min_length=1, max_length=500)


class InterestResponse(BaseModel):
	id: UUID
	post_id: UUID
	user_id: UUID
	name: Optional[str] = None
	email: Optional[str] = None
	message: str
	status: InterestStatus
	created_at: datetime
	reviewed_at: Optional[datetime] = None

	model_config = ConfigDict(from_attributes=True)


class InterestCounts(BaseModel):
	pending: int = 0
	approved: int = 0
	rejected: int = 0


class InterestListResponse(BaseModel):
	items: List[InterestResponse]
	total: int
	counts: Optional[InterestCounts] = None
	restricted: bool = False


class PostViewerCapabilities(BaseModel):
	is_creator: bool
	is_admin: bool
	can_express_interest: bool
	can_manage_group: bool
	can_view_interests: bool


class NeedPostDetailResponse(NeedPostResponse):
	interest_count: int
	interest_counts: InterestCounts
	interested_users: Optional[List[InterestResponse]] = None
	my_interest: Optional[InterestResponse] = None
	group_id: Optional[UUID] = None
	viewer: PostViewerCapabilities


class RejectInterestsRequest(BaseModel):
	user_ids: List[UUID] = Field(
		..., min_length=1, max_length=50, validation_alias=AliasChoices("user_ids", "userIds")
	)


class GroupCreateRequest(BaseModel):
	name: Optional[str] = Field(default=None, max_length=100)
	description: Optional[str] = Field(default=None, max_length=500)


class MemberResponse(BaseModel):
	user_id: UUID
	position: int
	joined_at: datetime

	model_config = ConfigDict(from_attributes=True)


class GroupResponse(BaseModel):
	id: UUID
	created_from_post: UUID
	name: str
	description: str
	kind: Literal["study", "transport"]
	visibility: Literal["public", "private"]
	max_members: int
	status: GroupStatus
	created_by: UUID
	created_at: datetime
	updated_at: datetime
	members: List[MemberResponse]
	member_count: int
	is_full: bool


class AdmitMembersRequest(BaseModel):
	post_id: Optional[UUID] = Field(default=None, validation_alias=AliasChoices("post_id", "postId"))
	user_ids: List[UUID] = Field(
		..., min_length=1, max_length=50, validation_alias=AliasChoices("user_ids", "userIds")
	)


class AdmissionOutcome(BaseModel):
	user_id: UUID
	outcome: Literal["admitted", "alreadyMember"]


class AdmitMembersResponse(BaseModel):
	results: List[AdmissionOutcome]
	group: GroupResponse


class AuditEventResponse(BaseModel):
	id: int
	post_id: UUID
	group_id: Optional[UUID] = None
	user_id: UUID
	action: str
	details: Optional[dict] = None
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)


class GroupListResponse(BaseModel):
	items: List[GroupResponse]
	total: int
	limit: int
	offset: int


class LeaveGroupResponse(BaseModel):
	group_id: UUID
	member_count: int
	status: GroupStatus


class GroupStatusUpdateRequest(BaseModel):
	status: GroupStatus
	reason: Optional[str] = Field(default=None, max_length=500)


class AnalyticsOverview(BaseModel):
	total_posts: int
	open_posts: int
	posts_with_interest: int
	total_groups: int
	active_groups: int
	groups_with_members: int
	engagement_rate: float


class AnalyticsRecentActivity(BaseModel):
	days: int
	posts: int
	groups: int


class AnalyticsResponse(BaseModel):
	overview: AnalyticsOverview
	posts_by_type: Dict[str, int]
	groups_by_type: Dict[str, int]
	interests_by_status: InterestCounts
	recent_activity: AnalyticsRecentActivity
