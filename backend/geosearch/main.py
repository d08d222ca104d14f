"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from geosearch.api import ops, search
from geosearch.api.errors import install_error_handlers
from geosearch.infra import postgres
from geosearch.infra import redis as redis_infra
from geosearch.obs import init as obs_init
from geosearch.settings import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	try:
		await postgres.init_pool()
	except OSError:
		# Queries only need Redis; the catalog pool is retried on first use.
		logger.warning("postgres.unavailable_at_startup", exc_info=True)
	try:
		yield
	finally:
		await postgres.close_pool()
		await redis_infra.close_client()


app = FastAPI(title="Geosearch Autocomplete", lifespan=lifespan)
install_error_handlers(app)

allow_origins = ["*"] if settings.is_dev() else []
if allow_origins:
	app.add_middleware(
		CORSMiddleware,
		allow_origins=allow_origins,
		allow_credentials=False,
		allow_methods=["GET", "POST"],
		allow_headers=["*"],
	)

obs_init(app)

app.include_router(search.router, tags=["search"])
app.include_router(ops.router, tags=["ops"])
