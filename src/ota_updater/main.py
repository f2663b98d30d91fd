"""FastAPI application for the OTA updater service."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
import uvicorn

from ota_updater.api.routes import router
from ota_updater.config import Settings, get_settings
from ota_updater.services.checker import UpdateChecker
from ota_updater.services.update_service import UpdateService
from ota_updater.utils.logging import setup_logger

VERSION = "1.0.0"


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application; settings are resolved at startup if not given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup/shutdown hooks.

        Startup:
        - Initialize logger
        - Create the staging and deployments directories
        - Create the UpdateService (session starts Idle, nothing is restored)
        - Start the update URL checker if configured

        Shutdown:
        - Stop the checker, cancel any active pipeline, end watch streams
        """
        cfg = settings or get_settings()
        logger = setup_logger(
            "ota_updater",
            cfg.log_file,
            max_bytes=cfg.log_max_bytes,
            backup_count=cfg.log_backup_count,
            level=cfg.log_level,
        )
        logger.info("OTA Updater starting up...")

        for directory in (cfg.work_dir, cfg.deployments_dir):
            Path(directory).mkdir(parents=True, exist_ok=True)
            logger.debug(f"Ensured directory exists: {directory}")

        service = UpdateService(cfg)
        app.state.update_service = service
        logger.info(
            f"Booted deployment: {service.pipeline.deploy_service.booted_deployment or 'none'}"
        )

        checker = None
        if cfg.update_url:
            checker = UpdateChecker(service, cfg.update_url, delay=cfg.update_check_delay)
            checker.start()

        logger.info(f"OTA Updater ready on port {cfg.port}")

        yield

        logger.info("OTA Updater shutting down...")
        if checker is not None:
            await checker.stop()
        await service.shutdown()

    app = FastAPI(
        title="OTA Updater",
        description="Update service with confirmation-gated installs",
        version=VERSION,
        lifespan=lifespan,
    )
    app.include_router(router)

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {"status": "ok", "service": "ota-updater", "version": VERSION}

    return app


app = create_app()


def main():
    """Main entry point for running the server."""
    settings = get_settings()
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        access_log=True,
    )


if __name__ == "__main__":
    main()
