from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncIterator, Iterator
from uuid import UUID, uuid4

import asyncpg
import pytest
import pytest_asyncio

from app.find_my_group.domain import models, repo as repo_module
from app.find_my_group.domain.exceptions import AlreadyExpressedError, CapacityExceededError
from app.find_my_group.domain.formation_service import FormationService
from app.find_my_group.domain.interests_service import InterestsService
from app.find_my_group.schemas import dto
from app.infra import postgres
from app.infra.auth import AuthenticatedUser

pytestmark = pytest.mark.asyncio

REPO_ROOT = Path(__file__).resolve().parents[3]
MIGRATIONS_DIR = REPO_ROOT / "infra" / "migrations"


@pytest.fixture(scope="module")
def postgres_container() -> Iterator["PostgresContainer"]:
    testcontainers = pytest.importorskip(
        "testcontainers.postgres",
        reason="testcontainers.postgres is required for integration tests",
    )
    PostgresContainer = testcontainers.PostgresContainer
    container = PostgresContainer("postgres:16-alpine")
    try:
        container.start()
    except Exception as exc:  # pragma: no cover - environment without docker
        pytest.skip(f"unable to start postgres container: {exc}")
    try:
        yield container
    finally:
        container.stop()


async def _run_migrations(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("DROP SCHEMA IF EXISTS public CASCADE")
        await conn.execute("CREATE SCHEMA public")
        await conn.execute("GRANT ALL ON SCHEMA public TO PUBLIC")
        for path in sorted(MIGRATIONS_DIR.glob("*.sql")):
            await conn.execute(path.read_text(encoding="utf-8"))


@pytest_asyncio.fixture(scope="function")
async def postgres_pool(postgres_container) -> AsyncIterator[asyncpg.Pool]:
    url = postgres_container.get_connection_url().replace("postgresql+psycopg2", "postgresql")
    pool = await asyncpg.create_pool(dsn=url, min_size=1, max_size=6, init=postgres._init_connection)
    await _run_migrations(pool)
    postgres.set_pool(pool)
    try:
        yield pool
    finally:
        postgres.set_pool(None)
        await pool.close()


def _user(name: str) -> AuthenticatedUser:
    return AuthenticatedUser(id=str(uuid4()), display_name=name, email=f"{name.lower()}@example.edu")


async def _seed_post(repo: repo_module.FindMyGroupRepository, creator: AuthenticatedUser, *, max_members: int):
    return await repo.create_post(
        title="Commute to campus",
        description="Sharing a car on weekdays",
        details=models.TransportDetails(route="Dhanmondi to Badda", vehicle_type="car", schedule="weekdays"),
        gender_preference="any",
        max_members=max_members,
        created_by=UUID(creator.id),
        created_by_name=creator.display_name,
        created_by_email=creator.email,
        expires_at=datetime.now(timezone.utc) + timedelta(days=30),
    )


@pytest.mark.integration
async def test_post_round_trip_and_search(postgres_pool):
    repo = repo_module.FindMyGroupRepository()
    alice = _user("Alice")
    post = await _seed_post(repo, alice, max_members=3)

    fetched = await repo.get_post(post.id)
    assert fetched is not None
    assert fetched.type == "transport"
    assert fetched.details.route == "Dhanmondi to Badda"

    items, total = await repo.list_open_posts(now=datetime.now(timezone.utc), search="badda", limit=10)
    assert total == 1
    assert items[0].id == post.id

    closed = await repo.transition_post_status(post.id, to_status="closed")
    assert closed is not None and closed.status == "closed"
    assert await repo.transition_post_status(post.id, to_status="closed") is None


@pytest.mark.integration
async def test_unique_interest_per_user(postgres_pool):
    repo = repo_module.FindMyGroupRepository()
    alice, bob = _user("Alice"), _user("Bob")
    post = await _seed_post(repo, alice, max_members=3)

    await repo.create_interest(post_id=post.id, user_id=UUID(bob.id), name="Bob", email=None, message="hi")
    with pytest.raises(AlreadyExpressedError):
        await repo.create_interest(post_id=post.id, user_id=UUID(bob.id), name="Bob", email=None, message="again")


@pytest.mark.integration
async def test_concurrent_expressions_keep_one_row(postgres_pool):
    repo = repo_module.FindMyGroupRepository()
    alice, bob = _user("Alice"), _user("Bob")
    post = await _seed_post(repo, alice, max_members=3)
    service = InterestsService(repository=repo)
    payload = dto.InterestCreateRequest(message="count me in")

    results = await asyncio.gather(
        *(service.express_interest(bob, post.id, payload) for _ in range(4)),
        return_exceptions=True,
    )

    assert sum(1 for item in results if isinstance(item, dto.InterestResponse)) == 1
    assert all(isinstance(item, AlreadyExpressedError) for item in results if not isinstance(item, dto.InterestResponse))
    counts = await repo.count_interests(post.id)
    assert counts["pending"] == 1


@pytest.mark.integration
async def test_concurrent_group_creation_yields_one_group(postgres_pool):
    repo = repo_module.FindMyGroupRepository()
    alice = _user("Alice")
    post = await _seed_post(repo, alice, max_members=3)
    service = FormationService(repository=repo)

    results = await asyncio.gather(
        *(service.create_group_from_post(alice, post.id, dto.GroupCreateRequest()) for _ in range(3))
    )

    assert len({group.id for group, _ in results}) == 1
    assert sum(1 for _, created in results if created) == 1
    assert results[0][0].visibility == "private"


@pytest.mark.integration
async def test_concurrent_admissions_never_exceed_capacity(postgres_pool):
    repo = repo_module.FindMyGroupRepository()
    alice = _user("Alice")
    candidates = [_user(f"Student{idx}") for idx in range(4)]
    post = await _seed_post(repo, alice, max_members=2)
    for candidate in candidates:
        await repo.create_interest(
            post_id=post.id, user_id=UUID(candidate.id), name=candidate.display_name, email=None, message="hi"
        )
    service = FormationService(repository=repo)
    group, _ = await service.create_group_from_post(alice, post.id, dto.GroupCreateRequest())

    batches = [candidates[:2], candidates[2:]]
    results = await asyncio.gather(
        *(
            service.admit_members(alice, group.id, dto.AdmitMembersRequest(user_ids=[UUID(u.id) for u in batch]))
            for batch in batches
        ),
        return_exceptions=True,
    )

    admitted = [item for item in results if isinstance(item, dto.AdmitMembersResponse)]
    rejected = [item for item in results if isinstance(item, CapacityExceededError)]
    assert len(admitted) == 1 and len(rejected) == 1
    assert await repo.count_members(group.id) == 2

    counts = await repo.count_interests(post.id)
    assert counts == {"pending": 2, "approved": 2, "rejected": 0}

    refreshed = await repo.get_post(post.id)
    assert refreshed.status == "fulfilled"

    events = await repo.list_audit_events(post.id)
    assert [event.action for event in events][:2] == ["members.admit", "group.create"]
    assert events[0].details["user_ids"]


@pytest.mark.integration
async def test_group_listing_status_and_membership_queries(postgres_pool):
    repo = repo_module.FindMyGroupRepository()
    alice, bob, carol = _user("Alice"), _user("Bob"), _user("Carol")
    post = await _seed_post(repo, alice, max_members=3)
    await repo.create_interest(post_id=post.id, user_id=UUID(bob.id), name="Bob", email=None, message="hi")
    service = FormationService(repository=repo)
    group, _ = await service.create_group_from_post(alice, post.id, dto.GroupCreateRequest())
    await service.admit_members(alice, group.id, dto.AdmitMembersRequest(user_ids=[UUID(alice.id), UUID(bob.id)]))

    hidden, hidden_total = await repo.list_groups(viewer_id=UUID(carol.id), status="active", limit=10)
    assert hidden == [] and hidden_total == 0
    visible, _ = await repo.list_groups(viewer_id=UUID(bob.id), status="active", search="badda", limit=10)
    assert [item.id for item in visible] == [group.id]

    async with postgres_pool.acquire() as conn:
        assert await repo.remove_member(group.id, UUID(bob.id), conn=conn)
        assert not await repo.remove_member(group.id, UUID(bob.id), conn=conn)
        archived = await repo.set_group_status(group.id, to_status="archived", conn=conn)
        assert archived is not None and archived.status == "archived"
        assert await repo.set_group_status(group.id, to_status="archived", conn=conn) is None

    analytics = await repo.collect_analytics(
        now=datetime.now(timezone.utc), since=datetime.now(timezone.utc) - timedelta(days=7)
    )
    assert analytics["total_groups"] == 1 and analytics["active_groups"] == 0
    assert analytics["interests_by_status"] == {"approved": 1}
