import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from slotswap.database import init_db
from slotswap.routes import slots, swaps, users

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

APP_NAME = "SlotSwap API"

app = FastAPI(title=APP_NAME)

_cors_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_extra = os.getenv("CORS_ORIGINS", "")
if _extra:
    _cors_origins.extend(o.strip() for o in _extra.split(",") if o.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(users.router, prefix="/api", tags=["users"])
app.include_router(slots.router, prefix="/api", tags=["events"])
app.include_router(swaps.router, prefix="/api", tags=["swaps"])


@app.on_event("startup")
def on_startup():
    init_db()
    route_count = sum(1 for r in app.routes if getattr(r, "path", None))
    logger.info("%s started with %d routes", APP_NAME, route_count)


@app.get("/api/health")
def health_check():
    return {"app_name": APP_NAME, "status": "healthy"}
