"""
Job registry initialization.

Registers the built-in job handlers with a job registry.
"""

from jobqueue.config.logging import get_logger
from jobqueue.config.settings import Settings
from jobqueue.v1.core.registries import JobRegistry
from jobqueue.v1.infra.jobs.handlers import MaintenanceCleanupHandler
from jobqueue.v1.infra.jobs.models import JobType
from jobqueue.v1.infra.jobs.store import JobStore

logger = get_logger(__name__)


def register_job_handlers(
    registry: JobRegistry, store: JobStore, settings: Settings
) -> None:
    """Register all built-in job handlers with ``registry``."""
    if registry.is_frozen():
        logger.info("Job registry frozen, skipping handler registration")
        return

    logger.info("Registering job handlers")

    # Maintenance job handlers
    registry.register(
        JobType.CLEANUP_OLD_DATA.value, MaintenanceCleanupHandler(store, settings)
    )

    logger.info("Job handlers registered", registered_handlers=registry.list())
