# betaflow/main.py
import logging

from fastapi.middleware.cors import CORSMiddleware
from fastapi import FastAPI
from tortoise.contrib.fastapi import register_tortoise
from betaflow.core.config import settings
from betaflow.core.db import TORTOISE_ORM
from betaflow.api.imports import router as import_router
from betaflow.api.jobs import router as jobs_router
from betaflow.api.websocket import router as websocket_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Betaflow Bulk Import")
app.include_router(import_router)
app.include_router(jobs_router)
app.include_router(websocket_router)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_tortoise(
    app,
    config=TORTOISE_ORM,
    generate_schemas=True,
    add_exception_handlers=True,
)
