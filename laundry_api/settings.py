# laundry_api/settings.py

from starlette.config import Config
from starlette.datastructures import Secret

try:
    config = Config(".env")
except FileNotFoundError:
    config = Config()

DATABASE_URL = config("DATABASE_URL", cast=Secret, default="sqlite:///./laundry.db")
TEST_DATABASE_URL = config("TEST_DATABASE_URL", cast=Secret, default="sqlite://")

SECRET_KEY = config("SECRET_KEY", cast=Secret, default="change-me")
ACCESS_TOKEN_EXPIRE_MINUTES = config("ACCESS_TOKEN_EXPIRE_MINUTES", cast=int, default=60 * 24)

KAFKA_ENABLED = config("KAFKA_ENABLED", cast=bool, default=True)
KAFKA_BOOTSTRAP_SERVERS = config("KAFKA_BOOTSTRAP_SERVERS", cast=str, default="broker:19092")
KAFKA_ORDER_TOPIC = config("KAFKA_ORDER_TOPIC", cast=str, default="order_events")
KAFKA_WITHDRAWAL_TOPIC = config("KAFKA_WITHDRAWAL_TOPIC", cast=str, default="withdrawal_events")

STRIPE_SECRET_KEY = config("STRIPE_SECRET_KEY", cast=Secret, default="")

# Calendar day used for wallet rollover and COD penalties
LEDGER_TIMEZONE = config("LEDGER_TIMEZONE", cast=str, default="Asia/Kolkata")

PICKUP_FEE = config("PICKUP_FEE", cast=float, default=50.0)
PARTNER_LEG_FEE = config("PARTNER_LEG_FEE", cast=float, default=25.0)
COD_PENALTY_PER_DAY = config("COD_PENALTY_PER_DAY", cast=float, default=150.0)
PLATFORM_MARKUP = config("PLATFORM_MARKUP", cast=float, default=0.15)

# First admin account, created at startup when no admin exists
DEFAULT_ADMIN_MOBILE = config("DEFAULT_ADMIN_MOBILE", cast=str, default="0000000000")
DEFAULT_ADMIN_EMAIL = config("DEFAULT_ADMIN_EMAIL", cast=str, default="admin@example.com")
DEFAULT_ADMIN_PASSWORD = config("DEFAULT_ADMIN_PASSWORD", cast=Secret, default="admin-password")
