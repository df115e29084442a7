# services/messaging/background.py
import asyncio
import logging
import os

from services.messaging.campaigns import AutomatedPushProcessor
from services.messaging.dispatcher import ScheduledSmsDispatcher
from services.messaging.reminders import TimeCapsuleDelivery
from shared import push_service, sms_service
from shared.database import get_db

logger = logging.getLogger(__name__)

SCHEDULED_SMS_INTERVAL = int(os.getenv("SCHEDULED_SMS_INTERVAL_SECONDS", "60"))
AUTOMATED_PUSH_INTERVAL = int(os.getenv("AUTOMATED_PUSH_INTERVAL_SECONDS", "900"))
TIME_CAPSULE_INTERVAL = int(os.getenv("TIME_CAPSULE_INTERVAL_SECONDS", "300"))

# Global task references
_background_tasks: set[asyncio.Task] = set()
_shutdown_event = asyncio.Event()


async def _sleep_or_shutdown(seconds: float) -> None:
    try:
        await asyncio.wait_for(_shutdown_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass


async def scheduled_sms_task():
    """Dispatch due scheduled SMS"""
    while not _shutdown_event.is_set():
        try:
            if sms_service.is_configured():
                db = await get_db()
                result = await ScheduledSmsDispatcher(db).run()
                if result.processed:
                    print(
                        f"📨 Scheduled SMS: processed {result.processed}, "
                        f"sent {result.sent}, failed {result.failed}",
                        flush=True,
                    )
            await _sleep_or_shutdown(SCHEDULED_SMS_INTERVAL)

        except Exception as e:
            logger.error(f"Error in scheduled SMS task: {e}", exc_info=True)
            await _sleep_or_shutdown(10)


async def automated_push_task():
    """Run active push campaigns"""
    while not _shutdown_event.is_set():
        try:
            if push_service.is_configured():
                db = await get_db()
                result = await AutomatedPushProcessor(db).run()
                if result.sent or result.failed:
                    print(
                        f"🔔 Automated push: sent {result.sent}, failed {result.failed}",
                        flush=True,
                    )
            await _sleep_or_shutdown(AUTOMATED_PUSH_INTERVAL)

        except Exception as e:
            logger.error(f"Error in automated push task: {e}", exc_info=True)
            await _sleep_or_shutdown(30)


async def time_capsule_task():
    """Open capsules that have come due"""
    while not _shutdown_event.is_set():
        try:
            db = await get_db()
            result = await TimeCapsuleDelivery(db).run()
            if result.processed:
                print(f"💌 Time capsules: delivered {result.processed}", flush=True)
            await _sleep_or_shutdown(TIME_CAPSULE_INTERVAL)

        except Exception as e:
            logger.error(f"Error in time capsule task: {e}", exc_info=True)
            await _sleep_or_shutdown(30)


async def start_background_tasks():
    """Start all background tasks"""
    global _background_tasks

    tasks = [
        asyncio.create_task(scheduled_sms_task()),
        asyncio.create_task(automated_push_task()),
        asyncio.create_task(time_capsule_task()),
    ]
    _background_tasks = set(tasks)

    for task in tasks:
        task.add_done_callback(_background_tasks.discard)


async def stop_background_tasks():
    """Stop all background tasks gracefully"""
    _shutdown_event.set()

    if _background_tasks:
        await asyncio.gather(*_background_tasks, return_exceptions=True)

    _background_tasks.clear()
    _shutdown_event.clear()
