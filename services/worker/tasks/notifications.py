"""
Milestone notification tasks

Each task run opens its own AppContext (database engine + HTTP client) inside
a fresh event loop and closes it before returning, so nothing async outlives
the task in a prefork worker.
"""
import asyncio
from typing import Any, Dict

import structlog

from packages.common.context import app_context
from packages.common.schemas.deadlines import Milestone
from services.worker.celery_app import app

logger = structlog.get_logger()


async def run_milestone(milestone: Milestone) -> Dict[str, Any]:
    """Run the scheduler for one milestone with a scoped AppContext"""
    async with app_context() as ctx:
        result = await ctx.scheduler().run(milestone)
    return result.model_dump(mode="json")


@app.task(name="notifications.due_today")
def notify_due_today() -> Dict[str, Any]:
    """Remind users about deadlines that end today (UTC)"""
    logger.info("notification_task_started", milestone=Milestone.DUE_TODAY.value)
    return asyncio.run(run_milestone(Milestone.DUE_TODAY))


@app.task(name="notifications.heads_up")
def notify_heads_up() -> Dict[str, Any]:
    """Remind users about deadlines that end in seven days (UTC)"""
    logger.info("notification_task_started", milestone=Milestone.HEADS_UP.value)
    return asyncio.run(run_milestone(Milestone.HEADS_UP))
