"""
Workers Initialization - Manages all background workers
"""

import asyncio
from typing import Dict
from utils.logger import get_logger
from workers.followup_worker import followup_worker

log = get_logger("workers")


class WorkerManager:
    def __init__(self):
        self.workers = {
            'followup': followup_worker
        }
        self.tasks = {}

    async def start_all_workers(self):
        """Start all background workers"""
        for name, worker in self.workers.items():
            try:
                self.tasks[name] = asyncio.create_task(worker.start())
                log.info("Worker started", worker=name)
            except Exception as e:
                log.error("Failed to start worker", worker=name, error=str(e))

    async def stop_all_workers(self):
        """Stop all background workers"""
        for name, worker in self.workers.items():
            try:
                await worker.stop()
            except Exception as e:
                log.error("Error stopping worker", worker=name, error=str(e))

        # Cancel all tasks
        for name, task in self.tasks.items():
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self.tasks.clear()
        log.info("All workers stopped")

    def get_all_status(self) -> Dict:
        """Get status of all workers"""
        status = {}
        for name, worker in self.workers.items():
            try:
                status[name] = worker.get_status()
            except Exception as e:
                status[name] = {'error': str(e)}
        return status


# Singleton instance
worker_manager = WorkerManager()
