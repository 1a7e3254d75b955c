"""HotelOps Backend Application.

This is the main entry point for the hotel operations backend. Staff and
guests chat in real time over a WebSocket; contacts and history are
polled over REST.

Modules:
    - chat: WebSocket direct messaging, contacts and history
    - auth: Password login and JWT bearer tokens
    - users: Staff and guest account directory
    - files: Chat image uploads to S3-compatible storage
    - inventory: Hotel supplies for admins and cleaners
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.auth.router import router as auth_router
from app.auth.service import AuthService
from app.chat.registry import ConnectionRegistry, OverflowPolicy
from app.chat.router import router as chat_router
from app.chat.service import ChatQueryService
from app.chat.store import MessageStore
from app.config import AppConfig, get_config
from app.database import Database
from app.errors import AppError
from app.files.service import ImageStorageService
from app.inventory.router import router as inventory_router
from app.inventory.service import InventoryService
from app.users.service import UserDirectory

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# botocore.auth logs the full SigV4 canonical request, which leaks
# credentials into the console. urllib3 logs every TCP connection.
for _noisy in (
    "botocore",
    "boto3",
    "urllib3",
    "urllib3.connectionpool",
    "httpx",
    "httpcore",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config: AppConfig = app.state.config

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in hotelops.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    admin = config.secrets.bootstrap_admin
    if admin.username and admin.password:
        try:
            app.state.auth_service.ensure_admin(admin.username, admin.password)
        except AppError as exc:
            logger.warning("Failed to create bootstrap admin '%s': %s", admin.username, exc)
    else:
        logger.info("No bootstrap admin configured")

    logger.info(
        f"Server running on http://{config.server.host}:{config.server.port}"
    )

    yield  # Application runs here

    # Shutdown
    app.state.db.close()
    logger.info("Application shutdown complete")


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Build the application and its services.

    Every service is created here and stored on ``app.state``; handlers
    reach them through ``request.app.state`` (or ``websocket.app.state``).
    The database opens lazily on first query.
    """
    config = config or get_config()

    app = FastAPI(
        title="HotelOps API",
        description="Backend service for hotel staff and guest messaging",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    db = Database(config.database.path)
    users = UserDirectory(db)
    message_store = MessageStore(db)

    app.state.config = config
    app.state.db = db
    app.state.users = users
    app.state.message_store = message_store
    app.state.registry = ConnectionRegistry(
        capacity=config.chat.channel_capacity,
        overflow_policy=OverflowPolicy(config.chat.overflow_policy),
    )
    app.state.auth_service = AuthService(
        users,
        secret_key=config.secrets.jwt.secret_key,
        algorithm=config.secrets.jwt.algorithm,
        token_expire_hours=config.auth.token_expire_hours,
        min_password_length=config.auth.min_password_length,
    )
    app.state.chat_queries = ChatQueryService(users, message_store)
    app.state.inventory = InventoryService(db)
    app.state.image_storage = ImageStorageService.from_config(config)

    # Register all routers
    app.include_router(chat_router)
    app.include_router(auth_router)
    app.include_router(inventory_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    return app


app = create_app()
