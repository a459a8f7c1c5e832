import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from config import settings
from core.rate_limit import limiter
from database import connect_db, close_db, get_db
from services.live_push import LiveConnectionRegistry
from services.mailer import Mailer
from services.notification_service import NotificationService
from services.otp_service import OtpRegistry, OtpService
from services.scheduler import CampaignScheduler

# Routers
from routers import auth, notifications, admin

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def _purge_expired_otps(registry: OtpRegistry) -> None:
    """Balayage unique des OTP expirés (la vérification re-contrôle de toute façon)."""
    while True:
        await asyncio.sleep(settings.OTP_PURGE_INTERVAL_SECONDS)
        try:
            registry.purge_expired()
        except Exception as exc:
            logger.error(f"Erreur purge OTP : {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await connect_db()
    mailer = Mailer.from_settings()
    live = LiveConnectionRegistry()
    otp_registry = OtpRegistry()
    notification_service = NotificationService(get_db(), mailer, live)

    app.state.live_connections = live
    app.state.notification_service = notification_service
    app.state.otp_service = OtpService(get_db(), mailer, otp_registry)

    scheduler = CampaignScheduler(notification_service)
    tasks = [
        asyncio.create_task(scheduler.run_forever()),
        asyncio.create_task(_purge_expired_otps(otp_registry)),
    ]
    logger.info("Flavor Fleet API started")
    yield
    # Shutdown
    for task in tasks:
        task.cancel()
    live.close_all()
    await close_db()
    logger.info("Flavor Fleet API stopped")


app = FastAPI(
    title="Flavor Fleet API",
    description="Notifications, push temps réel et authentification OTP",
    version="1.0.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.DEBUG else settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix="/api/auth", tags=["Auth"])
app.include_router(notifications.router, prefix="/api/notifications", tags=["Notifications"])
app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "app": "flavorfleet", "version": "1.0.0"}
