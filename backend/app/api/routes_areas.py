from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.identity import get_principal
from app.dependencies import get_db_session
from app.domain.access.capabilities import Principal
from app.domain.areas import schemas as area_schemas
from app.domain.areas import service as area_service

router = APIRouter(prefix="/v1")


@router.get("/areas", response_model=list[area_schemas.AreaResponse])
async def list_areas(
    include_inactive: bool = False,
    session: AsyncSession = Depends(get_db_session),
    principal: Principal = Depends(get_principal),
) -> list[area_schemas.AreaResponse]:
    areas = await area_service.list_areas(session, active_only=not include_inactive)
    return [area_schemas.AreaResponse.model_validate(area) for area in areas]


@router.post("/areas", response_model=area_schemas.AreaResponse, status_code=status.HTTP_201_CREATED)
async def create_area(
    payload: area_schemas.AreaCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    principal: Principal = Depends(get_principal),
) -> area_schemas.AreaResponse:
    area = await area_service.create_area(session, principal, **payload.model_dump())
    return area_schemas.AreaResponse.model_validate(area)


@router.delete("/areas/{area_id}", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_area(
    area_id: int,
    session: AsyncSession = Depends(get_db_session),
    principal: Principal = Depends(get_principal),
) -> Response:
    await area_service.deactivate_area(session, principal, area_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
