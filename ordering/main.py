import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, status
from ordering.core.db import init_db, close_db
from ordering.api.v1.orders import router as orders_router
from ordering.api.v1.outbox import router as outbox_router
from ordering.consumers.outbox_publisher import OutboxPublisher
from ordering.core.config import BROKER_URL, LOG_LEVEL, PROJECT_NAME, RUN_PUBLISHER, VERSION
from ordering.core.exception_handlers import setup_exception_handlers
from ordering.events.broker import build_broker

logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
log = logging.getLogger("ordering")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handles startup and shutdown events."""
    log.info(f"Starting {PROJECT_NAME} v{VERSION}...")
    await init_db() # Connect to DB and generate schemas

    publisher = None
    broker = build_broker(BROKER_URL)
    if RUN_PUBLISHER:
        publisher = OutboxPublisher(broker)
        publisher.start()
    app.state.publisher = publisher

    yield

    if publisher is not None:
        await publisher.stop()
    await broker.close()
    await close_db()
    log.info(f"{PROJECT_NAME} stopped.")

app = FastAPI(
    title=PROJECT_NAME,
    version=VERSION,
    lifespan=lifespan,
    # Configure API documentation and paths
    docs_url="/docs",
    redoc_url="/redoc"
)

# Include routers for modular API structure
app.include_router(orders_router, prefix="/api/v1/orders", tags=["Order Management"])
app.include_router(outbox_router, prefix="/api/v1/outbox", tags=["Outbox Operations"])


setup_exception_handlers(app)

@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Simple health check endpoint."""
    return {"status": "ok", "app_name": PROJECT_NAME}
