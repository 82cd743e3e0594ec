# config.py - Environment driven application settings
import os

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
SERVICE_VERSION = "2.0.0"

# Paging
DEFAULT_LIST_SIZE = int(os.getenv("DEFAULT_LIST_SIZE", "10"))

# Cache: entries older than this are reloaded from the database
CACHE_TTL_SECONDS = int(os.getenv("CACHE_TTL_SECONDS", "900"))

# Actions recorded up to this level (1 = critical only, 3 = everything)
ACTION_LEVEL = int(os.getenv("ACTION_LEVEL", "3"))

# OSM ids that are always treated as super users; "*" grants it to everyone
SUPER_ACCOUNTS = [
    account.strip()
    for account in os.getenv("SUPER_ACCOUNTS", "").split(",")
    if account.strip()
]

DEFAULT_THEME = os.getenv("DEFAULT_THEME", "skin-blue")


def is_super_account(osm_id) -> bool:
    return "*" in SUPER_ACCOUNTS or str(osm_id) in SUPER_ACCOUNTS
