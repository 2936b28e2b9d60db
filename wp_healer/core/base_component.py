"""
BaseComponent
Lifecycle shared by the engine's background services: start/stop of their
asyncio tasks, a heartbeat into the record store and failure tracking.
"""

import asyncio
import logging
import time
import psutil
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

FAILURE_ALERT_THRESHOLD = 5


class BaseComponent:
    """
    Base for long-lived services such as the job queue.

    Subclasses add their own tasks to self._tasks in _on_start() and report
    extra heartbeat fields from _collect_component_metrics().
    """

    def __init__(self, store, name: Optional[str] = None, heartbeat_interval: float = 15):
        """
        Args:
            store: RecordStore holding component states and alerts
            name (str, optional): Component name, defaults to class name
            heartbeat_interval (float): Seconds between heartbeats
        """
        self.store = store
        self.name = name or self.__class__.__name__
        self.is_running = False
        self.failure_count = 0
        self._tasks = []
        self._heartbeat_interval = heartbeat_interval
        self._started_at: Optional[float] = None

    async def start(self):
        if self.is_running:
            logger.warning(f"{self.name} is already running")
            return

        self.is_running = True
        self._started_at = time.time()
        self.store.update_component_status(self.name, "running")
        try:
            await self._on_start()
        except Exception as e:
            logger.error(f"Error starting {self.name}: {str(e)}")
            await self.stop()
            self.store.update_component_status(self.name, "error", str(e))
            raise
        self._tasks.append(asyncio.create_task(self._heartbeat_loop()))
        logger.info(f"{self.name} started")

    async def stop(self):
        if not self.is_running:
            return

        self.is_running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self.store.update_component_status(self.name, "stopped")
        logger.info(f"{self.name} stopped")

    async def _on_start(self):
        pass

    async def _heartbeat_loop(self):
        while self.is_running:
            try:
                await self.store.component_heartbeat(self.name, self.health_status(), await self.collect_metrics())
            except psutil.Error as e:
                logger.error(f"Error in {self.name} heartbeat: {str(e)}")
            await asyncio.sleep(self._heartbeat_interval)

    def health_status(self) -> str:
        return "healthy" if self.failure_count == 0 else "degraded"

    async def collect_metrics(self) -> Dict[str, Any]:
        """
        Process footprint plus the component's own counters

        Returns:
            Dict[str, Any]: Heartbeat metrics
        """
        process = psutil.Process()
        metrics = {
            "memory_mb": round(process.memory_info().rss / (1024 * 1024), 1),
            "cpu_percent": process.cpu_percent(interval=None),
            "uptime": time.time() - self._started_at if self._started_at else 0.0,
            "failures": self.failure_count
        }
        metrics.update(await self._collect_component_metrics())
        return metrics

    async def _collect_component_metrics(self) -> Dict[str, Any]:
        return {}

    def _record_error(self, error: BaseException, context: str = ""):
        """Keep the latest failure and alert once the failure count reaches the threshold"""
        self.failure_count += 1
        self.store.update_component_metric(self.name, "last_failure", {
            "error": str(error),
            "type": type(error).__name__,
            "context": context,
            "at": time.time()
        })
        if self.failure_count == FAILURE_ALERT_THRESHOLD:
            self.store.create_alert(
                self.name, "WARNING",
                f"{self.name} recorded {self.failure_count} failures, last in {context}: {str(error)}"
            )
