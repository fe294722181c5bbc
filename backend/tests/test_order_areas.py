import anyio
import pytest

from app.domain.access.capabilities import Principal, Role
from app.domain.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.domain.orders import areas as areas_service
from app.domain.orders import service as order_service
from tests.conftest import seed_areas, seed_users
from tests.order_factory import assigned_order, create_order, started_order


@pytest.mark.anyio
async def test_assign_areas_replaces_full_set(async_session_maker, principals, order_payload, seeded):
    async with async_session_maker() as session:
        order = await create_order(session, principals["supervisor"], order_payload)
        await areas_service.assign_areas(
            session, order.id, [seeded["area_kitchen"], seeded["area_bathroom"]], principals["supervisor"]
        )
        rows = await areas_service.assign_areas(
            session,
            order.id,
            [seeded["area_living_room"], seeded["area_kitchen"], seeded["area_kitchen"]],
            principals["manager"],
        )
        pending = await areas_service.pending_area_count(session, order.id)

    assert [row.area_id for row in rows] == [seeded["area_kitchen"], seeded["area_living_room"]]
    assert [row.area.name for row in rows] == ["Kitchen", "Living Room"]
    assert pending == 2


@pytest.mark.anyio
async def test_assign_areas_rejects_unknown_or_inactive(async_session_maker, principals, order_payload, seeded):
    async with async_session_maker() as session:
        order = await create_order(session, principals["supervisor"], order_payload)
        with pytest.raises(NotFoundError) as exc:
            await areas_service.assign_areas(
                session, order.id, [seeded["area_kitchen"], seeded["area_retired"], 9999], principals["supervisor"]
            )
        remaining = await areas_service.list_order_areas(session, order.id)

    assert exc.value.code == "areas_not_found"
    assert str(seeded["area_retired"]) in exc.value.detail
    assert "9999" in exc.value.detail
    assert remaining == []


@pytest.mark.anyio
async def test_assign_areas_requires_ids(async_session_maker, principals, order_payload):
    async with async_session_maker() as session:
        order = await create_order(session, principals["supervisor"], order_payload)
        with pytest.raises(ValidationError):
            await areas_service.assign_areas(session, order.id, [], principals["supervisor"])


@pytest.mark.anyio
async def test_assign_areas_regular_only(async_session_maker, principals, order_payload, seeded):
    async with async_session_maker() as session:
        order = await create_order(session, principals["supervisor"], order_payload, order_type="post_construction")
        with pytest.raises(ConflictError) as exc:
            await areas_service.assign_areas(session, order.id, [seeded["area_kitchen"]], principals["supervisor"])
    assert exc.value.code == "order_type_mismatch"


@pytest.mark.anyio
async def test_assign_areas_needs_assign_capability(async_session_maker, principals, order_payload, seeded):
    async with async_session_maker() as session:
        order = await create_order(session, principals["supervisor"], order_payload)
        with pytest.raises(ForbiddenError):
            await areas_service.assign_areas(session, order.id, [seeded["area_kitchen"]], principals["w1"])


@pytest.mark.anyio
async def test_assign_areas_closed_once_work_starts(async_session_maker, principals, order_payload, seeded):
    async with async_session_maker() as session:
        order = await started_order(session, principals, order_payload, area_ids=[seeded["area_kitchen"]])
        with pytest.raises(ConflictError) as exc:
            await areas_service.assign_areas(session, order.id, [seeded["area_bathroom"]], principals["supervisor"])
        rows = await areas_service.list_order_areas(session, order.id)

    assert exc.value.code == "order_not_assignable"
    assert [row.area_id for row in rows] == [seeded["area_kitchen"]]


@pytest.mark.anyio
async def test_complete_area_records_worker(async_session_maker, principals, order_payload, seeded):
    async with async_session_maker() as session:
        order = await started_order(session, principals, order_payload, area_ids=[seeded["area_kitchen"]])
        area = await areas_service.complete_area(session, order.id, seeded["area_kitchen"], principals["w2"])
        done = await areas_service.all_completed(session, order.id)

    assert area.is_completed is True
    assert area.completed_by == principals["w2"].id
    assert area.completed_at is not None
    assert done is True


@pytest.mark.anyio
async def test_complete_area_twice_conflicts(async_session_maker, principals, order_payload, seeded):
    async with async_session_maker() as session:
        order = await started_order(session, principals, order_payload, area_ids=[seeded["area_kitchen"]])
        await areas_service.complete_area(session, order.id, seeded["area_kitchen"], principals["w1"])
        with pytest.raises(ConflictError) as exc:
            await areas_service.complete_area(session, order.id, seeded["area_kitchen"], principals["w2"])
    assert exc.value.code == "area_already_completed"


@pytest.mark.anyio
async def test_complete_area_not_on_order(async_session_maker, principals, order_payload, seeded):
    async with async_session_maker() as session:
        order = await started_order(session, principals, order_payload, area_ids=[seeded["area_kitchen"]])
        with pytest.raises(NotFoundError) as exc:
            await areas_service.complete_area(session, order.id, seeded["area_bedroom"], principals["w1"])
    assert exc.value.code == "area_not_found"


@pytest.mark.anyio
async def test_complete_area_requires_assignment_and_progress(async_session_maker, principals, order_payload, seeded):
    async with async_session_maker() as session:
        order = await create_order(session, principals["supervisor"], order_payload)
        await areas_service.assign_areas(session, order.id, [seeded["area_kitchen"]], principals["supervisor"])
        await order_service.assign_workers(
            session,
            order.id,
            principals["supervisor"],
            worker_ids=[principals["w1"].id],
            responsible_id=principals["w1"].id,
        )
        with pytest.raises(ConflictError) as not_started:
            await areas_service.complete_area(session, order.id, seeded["area_kitchen"], principals["w1"])
        with pytest.raises(ForbiddenError) as not_assigned:
            await areas_service.complete_area(session, order.id, seeded["area_kitchen"], principals["w3"])

    assert not_started.value.code == "order_not_in_progress"
    assert not_assigned.value.code == "worker_not_assigned"


@pytest.mark.anyio
async def test_order_without_areas_completes_immediately(async_session_maker, principals, order_payload):
    async with async_session_maker() as session:
        order = await started_order(session, principals, order_payload)
        completed = await order_service.complete_order(session, order.id, principals["w1"])
    assert completed.status == "completed"


@pytest.mark.anyio
async def test_concurrent_area_completion_has_single_winner(concurrent_session_maker, order_payload):
    async with concurrent_session_maker() as session:
        users = await seed_users(session)
        areas = await seed_areas(session)
        await session.commit()
    principals = {name: Principal(id=user.id, role=Role(user.role)) for name, user in users.items()}
    kitchen = areas["kitchen"].id

    async with concurrent_session_maker() as session:
        order = await started_order(session, principals, order_payload, area_ids=[kitchen])

    outcomes: list[str] = []

    async def complete(name: str) -> None:
        async with concurrent_session_maker() as session:
            try:
                await areas_service.complete_area(session, order.id, kitchen, principals[name])
            except ConflictError as exc:
                outcomes.append(exc.code)
            else:
                outcomes.append("ok")

    async with anyio.create_task_group() as tg:
        tg.start_soon(complete, "w1")
        tg.start_soon(complete, "w2")

    assert sorted(outcomes) == ["area_already_completed", "ok"]

    async with concurrent_session_maker() as session:
        assert await areas_service.pending_area_count(session, order.id) == 0
