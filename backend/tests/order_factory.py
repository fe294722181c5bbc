"""Shortcuts that drive an order through the lifecycle for tests."""

from app.domain.orders import areas as areas_service
from app.domain.orders import service as order_service


async def create_order(session, principal, payload, **overrides):
    return await order_service.create_order(session, principal, **{**payload, **overrides})


async def assigned_order(session, principals, payload, *, workers=("w1", "w2"), responsible="w1", **overrides):
    order = await create_order(session, principals["supervisor"], payload, **overrides)
    await order_service.assign_workers(
        session,
        order.id,
        principals["supervisor"],
        worker_ids=[principals[name].id for name in workers],
        responsible_id=principals[responsible].id,
    )
    return order


async def started_order(session, principals, payload, *, area_ids=(), starter="w1", **overrides):
    order = await create_order(session, principals["supervisor"], payload, **overrides)
    if area_ids:
        await areas_service.assign_areas(session, order.id, list(area_ids), principals["supervisor"])
    await order_service.assign_workers(
        session,
        order.id,
        principals["supervisor"],
        worker_ids=[principals["w1"].id, principals["w2"].id],
        responsible_id=principals["w1"].id,
    )
    await order_service.start_work(
        session, order.id, principals[starter], gps_start_latitude=10.0, gps_start_longitude=20.0
    )
    return order
