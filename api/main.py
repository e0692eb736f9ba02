import logging
import os

from fastapi import FastAPI

from api.routes.identify import router as identify_router
from api.services.db import assert_expected_schema_version
from api.services.identify_service import close_identifiers

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

app = FastAPI(title="TraceTag API", version="0.1.0")


@app.on_event("startup")
def _schema_guard():
    assert_expected_schema_version()


@app.on_event("shutdown")
def _close_clients():
    close_identifiers()


@app.get("/health")
def health():
    return {"ok": True, "service": "tracetag"}


app.include_router(identify_router, prefix="/identify", tags=["identify"])
