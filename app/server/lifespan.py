from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from structlog.stdlib import BoundLogger

from core.config import Settings, settings
from core.logging import configure_logging
from modules.membership import service


def _list_configs(settings: Settings, logger: BoundLogger) -> None:
    config_settings: dict[str, list[object]] = {"settings": []}

    for key, value in settings.model_dump().items():
        if isinstance(value, dict):
            config_settings[key] = list(value.keys())
        else:
            config_settings["settings"].append({key: value})

    logger.info("configuration_initialized", base_settings=config_settings["settings"])
    for key, value in config_settings.items():
        if key != "settings":
            logger.info("configuration_loaded", config_setting=key, keys=value)


def _initialize_membership(logger: BoundLogger) -> None:
    try:
        service.initialize()
    except Exception as exc:
        logger.error("membership_initialization_failed", error=str(exc))
        raise

    if not service.get_gitlab_config().configured:
        logger.info(
            "gitlab_not_configured",
            message="Set GITLAB_TOKEN or PUT /api/v1/settings/gitlab",
        )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger = configure_logging()

    app.state.settings = settings
    app.state.logger = logger

    logger.info("application_startup")
    _list_configs(settings, logger)

    _initialize_membership(logger)

    yield

    logger.info("application_shutdown")
    service.shutdown()
