import os

# config.py — Central configuration for all services

API_HOST = os.getenv("API_HOST", "0.0.0.0")
# Render (and most PaaS) inject PORT; fall back to 5000 for local dev
API_PORT = int(os.getenv("PORT", 5000))

# Set MONGODB_URI as an environment variable in production.
MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017/")
# Hosted clusters (mongodb+srv://) need TLS with the certifi CA bundle.
MONGODB_TLS = os.getenv("MONGODB_TLS", "").lower() in ("1", "true", "yes") or MONGODB_URI.startswith(
    "mongodb+srv://"
)

DB_NAME           = os.getenv("DB_NAME", "iridium")
BURSTS_COLLECTION = "bursts"

# When set, bursts are read from an SBD filesystem archive instead of MongoDB.
SBD_ROOT = os.getenv("SBD_ROOT") or None
BURST_SOURCE = "filesystem" if SBD_ROOT else "mongodb"

# Active modem IMEIs of the two ATLAS installations
IMEI_NORTH = os.getenv("IMEI_NORTH", "300234063554810")
IMEI_SOUTH = os.getenv("IMEI_SOUTH", "300234063554840")
