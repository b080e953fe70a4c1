from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager, suppress
import asyncio
import logging

from quicksnack.core.config import settings
from quicksnack.core.email_utils import MailDeliveryChannel
from quicksnack.core.exceptions import QuickSnackError, quicksnack_error_handler
from quicksnack.db.database import async_session_maker, close_db, init_db
from quicksnack.services.otp import run_ticket_sweeper
from quicksnack.auth.auth_routes import router as auth_router
from quicksnack.auth.user_routes import router as user_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting QuickSnack API...")
    await init_db()
    app.state.delivery_channel = MailDeliveryChannel.from_settings()
    sweeper = asyncio.create_task(
        run_ticket_sweeper(async_session_maker, settings.OTP_SWEEP_INTERVAL_SECONDS)
    )
    yield
    # Shutdown
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    await close_db()
    logger.info("QuickSnack API stopped")


app = FastAPI(
    title="QuickSnack API",
    description="OTP-verified accounts and sessions for the QuickSnack storefront",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.FRONTEND_URL,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_origin_regex=r"^https://.*\.vercel\.app$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(QuickSnackError, quicksnack_error_handler)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "detail": "Internal server error"}
    )


# Include routers
app.include_router(auth_router, prefix="/api/auth", tags=["Authentication"])
app.include_router(user_router, prefix="/api/user", tags=["User"])


@app.get("/")
async def root():
    return {"message": "QuickSnack API is running!"}


@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "service": "QuickSnack API"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "quicksnack.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
