"""Job scheduling for Compete Tracker."""

from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

if TYPE_CHECKING:
    from .coordinator import RefreshCoordinator


class JobScheduler:
    """Runs the tracked-entity refresh on an interval.

    Default schedule:
    - Refresh all competitors and products: every 5 minutes

    A run that is still going when the next one is due is not doubled up;
    missed runs are coalesced into one.
    """

    def __init__(self, coordinator: "RefreshCoordinator", config: dict):
        """Initialize job scheduler.

        Args:
            coordinator: Refresh coordinator instance
            config: Configuration dictionary
        """
        self.coordinator = coordinator
        self.config = config

        schedule_config = self.config.get("schedule", {})
        self.max_instances = schedule_config.get("max_instances_per_job", 1)
        self.misfire_grace_time = schedule_config.get("misfire_grace_time_seconds", 120)

        self.scheduler = AsyncIOScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": self.max_instances,
                "misfire_grace_time": self.misfire_grace_time,
            }
        )

    def configure_jobs(self):
        """Set up all scheduled jobs based on configuration."""
        schedule_config = self.config.get("schedule", {})

        refresh_minutes = schedule_config.get("refresh_minutes", 5)
        self.scheduler.add_job(
            self.coordinator.refresh_all,
            IntervalTrigger(minutes=refresh_minutes),
            id="refresh_all",
            name="Refresh Tracked Entities",
            max_instances=self.max_instances,
            replace_existing=True,
        )
        logger.info(f"Scheduled tracked-entity refresh every {refresh_minutes} minutes")

    def start(self):
        """Start the scheduler."""
        logger.info("Starting job scheduler")
        self.scheduler.start()

    def stop(self):
        """Stop the scheduler."""
        logger.info("Stopping job scheduler")
        self.scheduler.shutdown()

    def get_jobs(self):
        """Get list of scheduled jobs."""
        return self.scheduler.get_jobs()
