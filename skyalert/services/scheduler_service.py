"""
APScheduler Service for SkyAlert - recurring engine passes and cache sweeps.
"""

from typing import Optional
import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = structlog.get_logger()


class SchedulerService:
    """
    Runs the engine on an interval without an external cron.

    The HTTP trigger keeps working either way; both go through the agent's
    single-flight guard, so overlapping runs are skipped rather than doubled.
    """

    def __init__(self, monitor_agent, gateway, interval_minutes: int = 5, cache_sweep_minutes: int = 10):
        self.scheduler = AsyncIOScheduler(timezone='UTC')
        self.monitor_agent = monitor_agent
        self.gateway = gateway
        self.interval_minutes = interval_minutes
        self.cache_sweep_minutes = cache_sweep_minutes
        self.is_running = False

        logger.info("scheduler_service_initialized",
            interval_minutes=interval_minutes,
            cache_sweep_minutes=cache_sweep_minutes
        )

    async def start(self):
        """Start the scheduler with engine and cache jobs"""
        if self.is_running:
            logger.warning("scheduler_already_running")
            return

        try:
            # Job 1: engine pass (direct flights, then rules)
            self.scheduler.add_job(
                self._run_engine_pass,
                IntervalTrigger(minutes=self.interval_minutes),
                id='engine_pass',
                max_instances=1,
                replace_existing=True
            )

            # Job 2: evict expired flight cache entries
            self.scheduler.add_job(
                self._sweep_flight_cache,
                IntervalTrigger(minutes=self.cache_sweep_minutes),
                id='flight_cache_sweep',
                max_instances=1,
                replace_existing=True
            )

            self.scheduler.start()
            self.is_running = True

            logger.info("scheduler_started",
                jobs_count=len(self.scheduler.get_jobs())
            )

        except Exception as e:
            logger.error("scheduler_start_failed", error=str(e))
            raise

    async def stop(self):
        """Stop the scheduler gracefully"""
        if not self.is_running:
            return

        try:
            self.scheduler.shutdown(wait=False)
            self.is_running = False

            logger.info("scheduler_stopped")

        except Exception as e:
            logger.error("scheduler_stop_failed", error=str(e))

    async def _run_engine_pass(self):
        try:
            result = await self.monitor_agent.run_pass()

            if result.skipped:
                logger.info("scheduled_engine_pass_skipped")
            else:
                logger.info("scheduled_engine_pass_completed", **result.to_dict())

        except Exception as e:
            logger.error("scheduled_engine_pass_exception", error=str(e))

    async def _sweep_flight_cache(self) -> Optional[int]:
        try:
            return self.gateway.cleanup_cache()
        except Exception as e:
            logger.error("flight_cache_sweep_failed", error=str(e))
            return None

    def get_job_status(self) -> dict:
        """Get current status of all scheduled jobs."""
        if not self.is_running:
            return {"status": "stopped", "jobs": []}

        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "name": job.name or job.id,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger)
            })

        return {
            "status": "running",
            "jobs_count": len(jobs),
            "jobs": jobs
        }
