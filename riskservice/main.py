"""
FastAPI application entrypoint.

Run locally:  uvicorn riskservice.main:app --port 9000
Scheduled refreshes are the host's job. A nightly run at 22:00, for example:

    0 22 * * *  curl -fsS -X POST http://localhost:9000/refresh > /dev/null
"""

import logging

from fastapi import FastAPI

from riskservice.api.routes import get_coordinator, router
from riskservice.config import settings
from riskservice.errors import RiskServiceError
from riskservice.models.database import Base, engine
from riskservice.refresh.coordinator import log_outcome_summary

logging.basicConfig(
    level=settings.LOG_LEVEL, format="%(levelname)s | %(name)s | %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Multifactor Risk Service",
    description=(
        "Derives multifactor risk pies from REDCap risk factor surveys and "
        "keeps the matching FHIR RiskAssessments up to date."
    ),
    version="1.0.0",
)

app.include_router(router)


@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)
    if settings.REFRESH_ON_STARTUP:
        try:
            log_outcome_summary(get_coordinator().refresh())
        except RiskServiceError as exc:
            logger.error("Startup refresh failed: %s", exc)
