import os

# Database Configuration
# Any SQLAlchemy async URL, e.g. postgresql+asyncpg://user:password@db:5432/orders_db
DB_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./orders.db")

# Application Metadata
PROJECT_NAME = "Order Lifecycle Service"
VERSION = "1.0.0"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Order rules
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "USD")
MAX_ORDER_ITEMS = int(os.getenv("MAX_ORDER_ITEMS", 100))

# Outbox Publisher Configuration
POLLING_INTERVAL = float(os.getenv("POLLING_INTERVAL", 1)) # Publisher checks for pending events every N seconds
BATCH_SIZE = int(os.getenv("BATCH_SIZE", 50)) # How many events to fetch per poll
MAX_RETRIES = int(os.getenv("MAX_RETRIES", 3)) # Failed publish attempts before an event is marked FAILED
PUBLISH_TIMEOUT = float(os.getenv("PUBLISH_TIMEOUT", 5)) # Seconds to wait for the broker per event
RUN_PUBLISHER = os.getenv("RUN_PUBLISHER", "true").lower() in ("1", "true", "yes")

# Broker Configuration
BROKER_URL = os.getenv("BROKER_URL", "memory://") # memory:// or redis://host:6379/0
BROKER_STREAM_PREFIX = os.getenv("BROKER_STREAM_PREFIX", "events")
BROKER_STREAM_MAXLEN = int(os.getenv("BROKER_STREAM_MAXLEN", 10000))
