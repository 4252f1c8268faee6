"""
Follow-up Worker - Background worker that sends due follow-ups
"""

import asyncio
from services.follow_up_manager import follow_up_manager
from utils.logger import get_logger
from utils.metrics import metrics

log = get_logger("followup_worker")


class FollowUpWorker:
    def __init__(self):
        self.is_running = False
        self.task = None

    async def start(self):
        """Start follow-up worker"""
        if self.is_running:
            log.warning("Follow-up worker already running")
            return

        self.is_running = True
        metrics.set_worker_status('followup', True)
        log.info("Starting follow-up worker")

        try:
            self.task = asyncio.create_task(follow_up_manager.start_monitoring())
            await self.task
        except asyncio.CancelledError:
            log.info("Follow-up worker cancelled")
        finally:
            self.is_running = False
            metrics.set_worker_status('followup', False)

    async def stop(self):
        """Stop follow-up worker"""
        if not self.is_running:
            return

        log.info("Stopping follow-up worker")
        follow_up_manager.stop_monitoring()

        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass

        self.is_running = False
        metrics.set_worker_status('followup', False)
        log.info("Follow-up worker stopped")

    def get_status(self) -> dict:
        """Get worker status"""
        return {
            'running': self.is_running,
            'check_interval': follow_up_manager.check_interval,
            'last_run': follow_up_manager.last_run,
        }


# Singleton instance
followup_worker = FollowUpWorker()
