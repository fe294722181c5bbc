from datetime import date, datetime, timezone

import pytest

from app.domain.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.domain.orders import daily_reports as reports_service
from app.domain.orders import photos as photos_service
from app.domain.orders import service as order_service
from app.settings import settings
from tests.order_factory import assigned_order, started_order

DESCRIPTION = "Cleared plaster dust from every room"


async def _post_construction(session, principals, order_payload):
    return await started_order(session, principals, order_payload, order_type="post_construction")


def test_normalize_report_date_drops_time():
    assert reports_service.normalize_report_date(datetime(2026, 5, 1, 23, 59, tzinfo=timezone.utc)) == date(
        2026, 5, 1
    )
    assert reports_service.normalize_report_date("2026-05-01T08:30:00Z") == date(2026, 5, 1)
    assert reports_service.normalize_report_date("2026-05-01") == date(2026, 5, 1)
    with pytest.raises(ValidationError) as exc:
        reports_service.normalize_report_date("yesterday")
    assert exc.value.code == "invalid_report_date"


@pytest.mark.parametrize("text", ["", "   ", "too short", "x" * 2001])
def test_description_bounds(text):
    with pytest.raises(ValidationError) as exc:
        reports_service.validate_description(text)
    assert exc.value.code == "invalid_description"


def test_description_bounds_follow_settings():
    settings.daily_report_min_chars = 2
    assert reports_service.validate_description("  ok  ") == "ok"
    assert reports_service.validate_description("x" * 2000) == "x" * 2000


@pytest.mark.anyio
async def test_same_date_different_times_collide(async_session_maker, principals, order_payload):
    async with async_session_maker() as session:
        order = await _post_construction(session, principals, order_payload)
        await reports_service.create_report(
            session,
            order.id,
            principals["w1"],
            report_date=datetime(2026, 5, 1, 8, 0, tzinfo=timezone.utc),
            description=DESCRIPTION,
        )
        with pytest.raises(ConflictError) as exc:
            await reports_service.create_report(
                session,
                order.id,
                principals["w2"],
                report_date=datetime(2026, 5, 1, 17, 30, tzinfo=timezone.utc),
                description=DESCRIPTION,
            )
    assert exc.value.code == "duplicate_report_date"


@pytest.mark.anyio
async def test_reports_rejected_on_regular_orders(async_session_maker, principals, order_payload):
    async with async_session_maker() as session:
        order = await started_order(session, principals, order_payload)
        with pytest.raises(ConflictError) as exc:
            await reports_service.create_report(
                session, order.id, principals["w1"], report_date=date(2026, 5, 1), description=DESCRIPTION
            )
    assert exc.value.code == "order_type_mismatch"


@pytest.mark.anyio
async def test_reports_require_in_progress_and_assignment(async_session_maker, principals, order_payload):
    async with async_session_maker() as session:
        order = await assigned_order(session, principals, order_payload, order_type="post_construction")
        with pytest.raises(ConflictError) as not_started:
            await reports_service.create_report(
                session, order.id, principals["w1"], report_date=date(2026, 5, 1), description=DESCRIPTION
            )
        with pytest.raises(ForbiddenError) as not_assigned:
            await reports_service.create_report(
                session, order.id, principals["w3"], report_date=date(2026, 5, 1), description=DESCRIPTION
            )
    assert not_started.value.code == "order_not_in_progress"
    assert not_assigned.value.code == "worker_not_assigned"


@pytest.mark.anyio
async def test_unique_constraint_catches_duplicate_missed_by_precheck(
    async_session_maker, principals, order_payload, monkeypatch
):
    async with async_session_maker() as session:
        order = await _post_construction(session, principals, order_payload)
        await reports_service.create_report(
            session, order.id, principals["w1"], report_date=date(2026, 5, 1), description=DESCRIPTION
        )

        async def stale_precheck(session, order_id, report_date):
            return False

        monkeypatch.setattr(reports_service, "_report_exists", stale_precheck)
        with pytest.raises(ConflictError) as exc:
            await reports_service.create_report(
                session, order.id, principals["w2"], report_date=date(2026, 5, 1), description=DESCRIPTION
            )
        reports = await reports_service.list_reports(session, order.id)

    assert exc.value.code == "duplicate_report_date"
    assert len(reports) == 1


@pytest.mark.anyio
async def test_update_report_author_only(async_session_maker, principals, order_payload):
    async with async_session_maker() as session:
        order = await _post_construction(session, principals, order_payload)
        report = await reports_service.create_report(
            session, order.id, principals["w1"], report_date=date(2026, 5, 1), description=DESCRIPTION
        )
        with pytest.raises(ForbiddenError) as exc:
            await reports_service.update_report(
                session, report.id, principals["w2"], description="Rewritten by someone else"
            )
        updated = await reports_service.update_report(
            session,
            report.id,
            principals["w1"],
            description="Cleared plaster dust and vacuumed vents",
            signature_worker="data:image/png;base64,SIG",
        )

    assert exc.value.code == "not_report_author"
    assert updated.description == "Cleared plaster dust and vacuumed vents"
    assert updated.signature_worker == "data:image/png;base64,SIG"


@pytest.mark.anyio
async def test_update_report_requires_fields(async_session_maker, principals, order_payload):
    async with async_session_maker() as session:
        order = await _post_construction(session, principals, order_payload)
        report = await reports_service.create_report(
            session, order.id, principals["w1"], report_date=date(2026, 5, 1), description=DESCRIPTION
        )
        with pytest.raises(ValidationError) as exc:
            await reports_service.update_report(session, report.id, principals["w1"])
    assert exc.value.code == "no_fields"


@pytest.mark.anyio
async def test_reports_frozen_after_completion(async_session_maker, principals, order_payload):
    async with async_session_maker() as session:
        order = await _post_construction(session, principals, order_payload)
        report = await reports_service.create_report(
            session, order.id, principals["w1"], report_date=date(2026, 5, 1), description=DESCRIPTION
        )
        await order_service.complete_order(session, order.id, principals["w1"])

        with pytest.raises(ConflictError) as update_exc:
            await reports_service.update_report(session, report.id, principals["w1"], description=DESCRIPTION)
        with pytest.raises(ConflictError) as delete_exc:
            await reports_service.delete_report(session, report.id, principals["supervisor"])

    assert update_exc.value.code == "order_terminal"
    assert delete_exc.value.code == "order_terminal"


@pytest.mark.anyio
async def test_delete_report_removes_its_photos(async_session_maker, principals, order_payload):
    async with async_session_maker() as session:
        order = await _post_construction(session, principals, order_payload)
        report = await reports_service.create_report(
            session, order.id, principals["w1"], report_date=date(2026, 5, 1), description=DESCRIPTION
        )
        await photos_service.admit_photo(
            session, order.id, principals["w1"], photo_url="https://cdn.example.com/a.jpg", daily_report_id=report.id
        )
        await photos_service.admit_photo(session, order.id, principals["w1"], photo_url="https://cdn.example.com/b.jpg")

        with pytest.raises(ForbiddenError):
            await reports_service.delete_report(session, report.id, principals["w1"])
        await reports_service.delete_report(session, report.id, principals["manager"])
        with pytest.raises(NotFoundError):
            await reports_service.delete_report(session, report.id, principals["manager"])
        remaining = await photos_service.list_photos(session, order.id)

    assert [photo.photo_url for photo in remaining] == ["https://cdn.example.com/b.jpg"]
    assert remaining[0].daily_report_id is None
