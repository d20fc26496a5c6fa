"""Main application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from .core.config import settings
from .core.config_validation import run_config_checks
from .api.routes import router
from .services.agent_gateway import RecordedAgentGateway
from .services.agent_task_service import agent_task_service
from .services.record_store import InMemoryRecordStore

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def _initialize_dummy_data(app: FastAPI) -> None:
    """Seed a small deployment with agents for development."""
    logger.info("Initializing dummy deployment for development")

    store = InMemoryRecordStore()
    gateway = RecordedAgentGateway()
    deployment = store.create_deployment("demo")

    for job, index in (("web", 0), ("web", 1), ("db", 0)):
        instance = store.create_instance(deployment, job, index)
        vm = store.create_vm(deployment, f"vm-{job}-{index}", f"agent-{job}-{index}")
        store.attach_vm(instance.id, vm.id)
        state = {
            "deployment": deployment.name,
            "job": {"name": job, "release": "demo-release"},
            "index": index,
            "release": {"name": "demo-release", "version": "1"},
        }
        if job == "db":
            # Legacy disk record without a size
            store.create_persistent_disk(instance, f"disk-{job}-{index}", size=0)
            state["persistent_disk"] = 10240
        gateway.record_state(vm.agent_id, state)

    # A VM left behind without an instance
    orphan = store.create_vm(deployment, "vm-orphan", "agent-orphan")
    gateway.record_state(orphan.agent_id, {"deployment": deployment.name})

    app.state.record_store = store
    app.state.agent_gateway = gateway
    logger.info("Initialized dummy deployment '%s'", deployment.name)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting %s", settings.app_name)
    logger.info("Version: %s", settings.app_version)
    logger.info("Debug mode: %s", settings.debug)

    config_result = run_config_checks()

    if config_result.has_errors:
        for issue in config_result.errors:
            logger.error("Configuration error: %s", issue.message)
            if issue.hint:
                logger.error("Hint: %s", issue.hint)

    if config_result.has_warnings:
        for issue in config_result.warnings:
            logger.warning("Configuration warning: %s", issue.message)
            if issue.hint:
                logger.warning("Hint: %s", issue.hint)

    if settings.dummy_data:
        logger.info("DUMMY_DATA enabled - using development deployment")
        _initialize_dummy_data(app)

    workers_started = False
    if not config_result.has_errors:
        await agent_task_service.start()
        workers_started = True
    else:
        logger.error(
            "Skipping agent worker startup because configuration errors were detected."
        )

    try:
        yield
    finally:
        logger.info("Shutting down application")
        if workers_started:
            await agent_task_service.stop()
        logger.info("Application stopped")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Reconciles recorded VM state with what deployed agents report",
    lifespan=lifespan,
)

app.include_router(router)


def main():
    """Run the application."""
    uvicorn.run(
        "reconciler.main:app",
        host="0.0.0.0",
        port=8000,
        log_level="debug" if settings.debug else "info",
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
