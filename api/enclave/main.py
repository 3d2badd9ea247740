import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from enclave.db.migrate import run_migration
from enclave.routers import health, sms

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: run idempotent schema migration
    run_migration()
    yield


app = FastAPI(title="Enclave", docs_url="/docs", lifespan=lifespan)

app.include_router(health.router)
app.include_router(sms.router)
