import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.shift_routes import close_lifecycles
from api.shift_routes import router as shift_router
from core.errors import ShiftError

# This file is the control center of the whole application

# Load environment variables from .env file, if it exists
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Default values can be provided if the env var is not set
DEV_DOMAIN = os.getenv("DEV_DOMAIN", "http://localhost:5173")
PRODUCTION_DOMAIN = os.getenv("PRODUCTION_DOMAIN", "https://timetrack.nz")

# Construct the list of allowed origins, always including both dev and production
allowed_origins_list = [
    DEV_DOMAIN,
    PRODUCTION_DOMAIN,
    "http://localhost:3000",  # Additional fallback for React dev
    "http://127.0.0.1:5173",  # Additional fallback for Vite dev
]

# Remove any None values and duplicates
allowed_origins_list = list(set([origin for origin in allowed_origins_list if origin]))

logger.info(f"[CORS] Allowing origins: {allowed_origins_list}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield

    # Stop tracking loops and pending photo uploads
    await close_lifecycles()


# Starts Fast API Up; Init
app = FastAPI(lifespan=lifespan)

# Allow requests from your React dev server & production
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Domain Errors Carry Their Own HTTP Status
@app.exception_handler(ShiftError)
async def shift_error_handler(request: Request, exc: ShiftError):
    if exc.status_code >= 500:
        logger.error(f"[SHIFT] {request.method} {request.url.path} failed: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# Connects Shift Routes (clock-in / out, breaks, travel, history) to main app
app.include_router(shift_router, prefix="/shifts", tags=["Shifts"])
