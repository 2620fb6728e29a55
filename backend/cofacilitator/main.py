from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cofacilitator.api.v1 import api_router
from cofacilitator.core.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.env == 'development' else logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.project_name, version="0.1.0")

origins = settings.cors_origin_list
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ['*'],
    allow_credentials='*' not in origins,
    allow_methods=['*'],
    allow_headers=['*'],
)

app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/health")
def health() -> dict:
    return {
        "ok": True,
        "env": settings.env,
        "speech_engine": settings.speech_engine,
        "whisper_configured": bool(settings.openai_api_key),
    }


logger.info("app_ready env=%s prefix=%s engine=%s", settings.env, settings.api_v1_prefix, settings.speech_engine)
