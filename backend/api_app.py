"""FastAPI application entrypoint for the collaborative canvas.

Serves the `/canvas` API: per-actor sessions, shape gestures, undo/redo and
advisory locks.

Run locally with:
    uvicorn api_app:app --reload

Environment:
    CANVAS_LOG_LEVEL      root log level (default INFO)
    CANVAS_CORS_ORIGINS   comma separated allowed origins (default *)
    CANVAS_DATABASE_URL   see db/database.py
"""

import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from canvas_api.canvas_router import router as canvas_router
from db.database import init_db

logging.basicConfig(
    level=os.getenv("CANVAS_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

CORS_ORIGINS = [o.strip() for o in os.getenv("CANVAS_CORS_ORIGINS", "*").split(",") if o.strip()]

app = FastAPI(title="Collaborative Canvas")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(canvas_router)


@app.on_event("startup")
def _startup() -> None:
    # The shapes table must exist before the first session loads.
    init_db()
