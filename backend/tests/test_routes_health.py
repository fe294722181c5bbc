import asyncio

from app.domain.outbox.service import enqueue_outbox_event
from app.main import app


async def _enqueue(async_session_maker, dedupe_key: str) -> None:
    async with async_session_maker() as session:
        await enqueue_outbox_event(session, kind="order_completed", payload={"order_id": 1}, dedupe_key=dedupe_key)
        await session.commit()


def test_healthz_get_and_head(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}

    head = client.head("/healthz")
    assert head.status_code == 200


def test_readyz_reports_db_and_outbox(client, async_session_maker):
    asyncio.run(_enqueue(async_session_maker, "order_completed:1"))

    response = client.get("/readyz")

    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is True
    db = next(check for check in payload["checks"] if check["name"] == "db")
    assert db["ok"] is True
    outbox = next(check for check in payload["checks"] if check["name"] == "outbox")
    assert outbox["detail"] == {"pending": 1, "retry": 0, "dead": 0}


def test_readyz_fails_without_session_factory(client):
    app.state.db_session_factory = None

    response = client.get("/readyz")

    assert response.status_code == 503
    payload = response.json()
    assert payload["ok"] is False
    db = next(check for check in payload["checks"] if check["name"] == "db")
    assert db["detail"]["message"] == "database session factory unavailable"


def test_readyz_reports_database_errors(client):
    class BrokenFactory:
        def __call__(self):
            raise ConnectionError("database down")

    app.state.db_session_factory = BrokenFactory()

    response = client.get("/readyz")

    assert response.status_code == 503
    checks = {check["name"]: check for check in response.json()["checks"]}
    assert checks["db"]["detail"]["error"] == "ConnectionError"
    assert checks["outbox"]["detail"]["error"] == "ConnectionError"
