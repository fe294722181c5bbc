import logging

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.identity import get_principal
from app.dependencies import get_db_session
from app.domain.access.capabilities import Principal
from app.domain.orders import areas as areas_service
from app.domain.orders import daily_reports as reports_service
from app.domain.orders import photos as photos_service
from app.domain.orders import schemas as order_schemas
from app.domain.orders import service as order_service
from app.domain.orders.db_models import Order

router = APIRouter(prefix="/v1")
logger = logging.getLogger(__name__)


def _serialize_order(order: Order) -> dict:
    payload = order_schemas.OrderResponse.model_validate(order).model_dump()
    payload["has_worker_signature"] = bool(order.signature_worker)
    payload["has_client_signature"] = bool(order.signature_client)
    return payload


def _serialize_snapshot(snapshot: order_service.OrderSnapshot) -> order_schemas.OrderSnapshotResponse:
    return order_schemas.OrderSnapshotResponse(
        **_serialize_order(snapshot.order),
        workers=[order_schemas.AssignmentResponse.model_validate(row) for row in snapshot.assignments],
        areas=[
            order_schemas.OrderAreaResponse(
                area_id=row.area_id,
                name=row.area.name if row.area is not None else None,
                is_completed=row.is_completed,
                completed_by=row.completed_by,
                completed_at=row.completed_at,
            )
            for row in snapshot.areas
        ],
        daily_reports=[order_schemas.DailyReportResponse.model_validate(row) for row in snapshot.daily_reports],
        photos=[order_schemas.PhotoResponse.model_validate(row) for row in snapshot.photos],
        activity=[order_schemas.ActivityResponse.model_validate(row) for row in snapshot.activity],
    )


async def _snapshot(
    session: AsyncSession, order_id: int, principal: Principal, *, check_visibility: bool = False
) -> order_schemas.OrderSnapshotResponse:
    snapshot = await order_service.get_snapshot(session, order_id, principal, check_visibility=check_visibility)
    return _serialize_snapshot(snapshot)


@router.post(
    "/orders",
    response_model=order_schemas.OrderSnapshotResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_order(
    payload: order_schemas.OrderCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    principal: Principal = Depends(get_principal),
) -> order_schemas.OrderSnapshotResponse:
    order = await order_service.create_order(session, principal, **payload.model_dump())
    return await _snapshot(session, order.id, principal)


@router.get("/orders/{order_id}", response_model=order_schemas.OrderSnapshotResponse)
async def get_order(
    order_id: int,
    session: AsyncSession = Depends(get_db_session),
    principal: Principal = Depends(get_principal),
) -> order_schemas.OrderSnapshotResponse:
    return await _snapshot(session, order_id, principal, check_visibility=True)


@router.patch("/orders/{order_id}", response_model=order_schemas.OrderSnapshotResponse)
async def edit_order(
    order_id: int,
    payload: order_schemas.OrderUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
    principal: Principal = Depends(get_principal),
) -> order_schemas.OrderSnapshotResponse:
    await order_service.edit_order(session, order_id, principal, payload.model_dump(exclude_unset=True))
    return await _snapshot(session, order_id, principal)


@router.post("/orders/{order_id}/assign", response_model=order_schemas.OrderSnapshotResponse)
async def assign_workers(
    order_id: int,
    payload: order_schemas.AssignWorkersRequest,
    session: AsyncSession = Depends(get_db_session),
    principal: Principal = Depends(get_principal),
) -> order_schemas.OrderSnapshotResponse:
    await order_service.assign_workers(
        session,
        order_id,
        principal,
        worker_ids=payload.worker_ids,
        responsible_id=payload.responsible_worker_id,
    )
    return await _snapshot(session, order_id, principal)


@router.put("/orders/{order_id}/areas", response_model=order_schemas.OrderSnapshotResponse)
async def assign_areas(
    order_id: int,
    payload: order_schemas.AssignAreasRequest,
    session: AsyncSession = Depends(get_db_session),
    principal: Principal = Depends(get_principal),
) -> order_schemas.OrderSnapshotResponse:
    await areas_service.assign_areas(session, order_id, payload.area_ids, principal)
    return await _snapshot(session, order_id, principal)


@router.post("/orders/{order_id}/start", response_model=order_schemas.OrderSnapshotResponse)
async def start_work(
    order_id: int,
    payload: order_schemas.StartWorkRequest,
    session: AsyncSession = Depends(get_db_session),
    principal: Principal = Depends(get_principal),
) -> order_schemas.OrderSnapshotResponse:
    await order_service.start_work(session, order_id, principal, **payload.model_dump())
    return await _snapshot(session, order_id, principal)


@router.post(
    "/orders/{order_id}/areas/{area_id}/complete",
    response_model=order_schemas.OrderSnapshotResponse,
)
async def complete_order_area(
    order_id: int,
    area_id: int,
    session: AsyncSession = Depends(get_db_session),
    principal: Principal = Depends(get_principal),
) -> order_schemas.OrderSnapshotResponse:
    await areas_service.complete_area(session, order_id, area_id, principal)
    return await _snapshot(session, order_id, principal)


@router.post("/orders/{order_id}/complete", response_model=order_schemas.OrderSnapshotResponse)
async def complete_order(
    order_id: int,
    payload: order_schemas.CompleteOrderRequest,
    session: AsyncSession = Depends(get_db_session),
    principal: Principal = Depends(get_principal),
) -> order_schemas.OrderSnapshotResponse:
    await order_service.complete_order(session, order_id, principal, **payload.model_dump())
    return await _snapshot(session, order_id, principal)


@router.post("/orders/{order_id}/cancel", response_model=order_schemas.OrderSnapshotResponse)
async def cancel_order(
    order_id: int,
    payload: order_schemas.CancelOrderRequest | None = None,
    session: AsyncSession = Depends(get_db_session),
    principal: Principal = Depends(get_principal),
) -> order_schemas.OrderSnapshotResponse:
    reason = payload.reason if payload else None
    await order_service.cancel_order(session, order_id, principal, reason=reason)
    return await _snapshot(session, order_id, principal)


@router.post(
    "/orders/{order_id}/reports",
    response_model=order_schemas.OrderSnapshotResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_daily_report(
    order_id: int,
    payload: order_schemas.DailyReportCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    principal: Principal = Depends(get_principal),
) -> order_schemas.OrderSnapshotResponse:
    await reports_service.create_report(
        session,
        order_id,
        principal,
        report_date=payload.report_date,
        description=payload.description,
        signature_worker=payload.signature_worker,
    )
    return await _snapshot(session, order_id, principal)


@router.patch("/reports/{report_id}", response_model=order_schemas.OrderSnapshotResponse)
async def update_daily_report(
    report_id: int,
    payload: order_schemas.DailyReportUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
    principal: Principal = Depends(get_principal),
) -> order_schemas.OrderSnapshotResponse:
    fields = payload.model_dump(exclude_unset=True)
    report = await reports_service.update_report(session, report_id, principal, **fields)
    return await _snapshot(session, report.order_id, principal)


@router.delete("/reports/{report_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_daily_report(
    report_id: int,
    session: AsyncSession = Depends(get_db_session),
    principal: Principal = Depends(get_principal),
) -> Response:
    await reports_service.delete_report(session, report_id, principal)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/orders/{order_id}/photos",
    response_model=order_schemas.OrderSnapshotResponse,
    status_code=status.HTTP_201_CREATED,
)
async def admit_photo(
    order_id: int,
    payload: order_schemas.PhotoCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    principal: Principal = Depends(get_principal),
) -> order_schemas.OrderSnapshotResponse:
    await photos_service.admit_photo(session, order_id, principal, **payload.model_dump())
    return await _snapshot(session, order_id, principal)


@router.patch("/photos/{photo_id}", response_model=order_schemas.OrderSnapshotResponse)
async def update_photo_caption(
    photo_id: int,
    payload: order_schemas.PhotoCaptionRequest,
    session: AsyncSession = Depends(get_db_session),
    principal: Principal = Depends(get_principal),
) -> order_schemas.OrderSnapshotResponse:
    photo = await photos_service.update_caption(session, photo_id, principal, payload.caption)
    return await _snapshot(session, photo.order_id, principal)


@router.delete("/photos/{photo_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_photo(
    photo_id: int,
    session: AsyncSession = Depends(get_db_session),
    principal: Principal = Depends(get_principal),
) -> Response:
    await photos_service.delete_photo(session, photo_id, principal)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
