"""Select the persistence adapter named in the settings."""

from __future__ import annotations

import structlog

from orgkit.core.config import Settings
from orgkit.core.database import create_engine
from orgkit.repositories.json_adapter import JsonUnitOfWork
from orgkit.repositories.ports import UnitOfWork
from orgkit.repositories.sql_adapter import SqlUnitOfWork

log = structlog.get_logger()


def build_unit_of_work(settings: Settings) -> UnitOfWork:
    if settings.persistence == "sql":
        log.info("persistence.sql", database_url=settings.database_url.split("@")[-1])
        return SqlUnitOfWork(create_engine(settings.database_url, echo=settings.debug))

    log.info("persistence.json", data_dir=settings.data_dir)
    return JsonUnitOfWork(settings.data_dir)
