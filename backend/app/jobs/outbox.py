from app.domain.notifications.service import InAppNotificationSink
from app.domain.outbox.service import NotificationSink, OutboxAdapters, process_outbox
from app.settings import settings


async def run_outbox_delivery(session, sink: NotificationSink | None = None) -> dict[str, int]:
    adapters = OutboxAdapters(sink=sink or InAppNotificationSink())
    return await process_outbox(session, adapters, limit=settings.job_outbox_batch_size)
