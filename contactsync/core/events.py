"""
Event handlers for application lifecycle events.
"""
import asyncio
import logging
from typing import List

from contactsync.core.config import settings

logger = logging.getLogger("contactsync")

# Collection of background tasks to manage
background_tasks: List[asyncio.Task] = []


async def startup_event_handler() -> None:
    """
    Handle application startup.

    Initialize the database and start the upload queue worker.
    """
    logger.info("Starting ContactSync Backend application")

    try:
        from contactsync.db.session import initialize_database
        await initialize_database()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Error initializing database: {e}")

    if settings.QUEUE_WORKER_ENABLED:
        try:
            from contactsync.services.uploads.queue import get_upload_worker
            worker = get_upload_worker()
            worker_task = asyncio.create_task(worker.start(), name="upload-queue-worker")
            background_tasks.append(worker_task)
            logger.info("Upload queue worker started successfully")
        except Exception as e:
            logger.error(f"Error starting upload queue worker: {e}")

    logger.info(f"✅ {settings.PROJECT_NAME} v{settings.VERSION} startup complete")


async def shutdown_event_handler() -> None:
    """
    Handle application shutdown.

    Stop the worker, cancel background tasks and close connections.
    """
    logger.info("Shutting down ContactSync Backend application")

    if settings.QUEUE_WORKER_ENABLED:
        try:
            from contactsync.services.uploads.queue import get_upload_worker
            await get_upload_worker().stop()
        except Exception as e:
            logger.error(f"Error stopping upload queue worker: {e}")

    # Cancel all background tasks
    for task in background_tasks:
        if not task.done():
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout=5.0)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                logger.warning(f"Task {task.get_name()} was cancelled")
    background_tasks.clear()

    try:
        from contactsync.db.session import close_database_connections
        await close_database_connections()
        logger.info("Database connections closed")
    except Exception as e:
        logger.error(f"Error closing database connections: {e}")

    logger.info("✅ Application shutdown complete")
