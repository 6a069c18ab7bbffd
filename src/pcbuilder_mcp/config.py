"""Configuration for PC Builder MCP server."""

import os
from pathlib import Path

# Server settings
HTTP_PORT = int(os.getenv("HTTP_PORT", "8080"))
HTTP_HOST = os.getenv("HTTP_HOST", "0.0.0.0")
RATE_LIMIT_REQUESTS = int(os.getenv("RATE_LIMIT_REQUESTS", "100"))
RATE_LIMIT_WINDOW = float(os.getenv("RATE_LIMIT_WINDOW", "60"))  # seconds
# Only honor X-Forwarded-For when a reverse proxy we control sets it
TRUST_PROXY_HEADERS = os.getenv("TRUST_PROXY_HEADERS", "false").lower() in ("1", "true", "yes")

# Catalog storage
_PACKAGE_DATA_DIR = Path(__file__).parent.parent.parent / "data"
CATALOG_DATA_DIR = Path(os.getenv("CATALOG_DATA_DIR", str(_PACKAGE_DATA_DIR)))
CATALOG_DB_PATH = Path(os.getenv("CATALOG_DB_PATH", str(CATALOG_DATA_DIR / "catalog.db")))
CATALOG_SEED_FILE = "sample_catalog.json"
CATALOG_BACKEND = os.getenv("CATALOG_BACKEND", "sqlite")  # "sqlite" or "rest"

# Remote catalog (PostgREST-style API, e.g. the storefront's Supabase project)
CATALOG_API_URL = os.getenv("CATALOG_API_URL", "")
CATALOG_API_KEY = os.getenv("CATALOG_API_KEY", "")
CATALOG_CACHE_TTL = 300  # Rules and specs change rarely; 5 minutes keeps admin edits visible
CATALOG_CACHE_MAX_SIZE = 5000

# Fetch settings
FETCH_TIMEOUT = float(os.getenv("FETCH_TIMEOUT", "5.0"))
FETCH_CONCURRENT_LIMIT = int(os.getenv("FETCH_CONCURRENT_LIMIT", "5"))
MAX_BATCH_SIZE = 500  # Max component ids per batch query
MAX_PRODUCTS_PER_REQUEST = 2000  # Max products accepted by filter_products

# Engine policies
# "permissive": missing data never blocks. "strict": missing data is incompatible.
HEURISTIC_ABSENCE_POLICY = os.getenv("HEURISTIC_ABSENCE_POLICY", "permissive")
DECLARATIVE_ABSENCE_POLICY = os.getenv("DECLARATIVE_ABSENCE_POLICY", "strict")
# "pass": custom rules are logged and skipped. "block": custom rules fail the pair.
CUSTOM_RULE_POLICY = os.getenv("CUSTOM_RULE_POLICY", "pass")
# "permissive": a timed-out fetch means "cannot determine". "retry": report a retryable failure.
TIMEOUT_POLICY = os.getenv("TIMEOUT_POLICY", "permissive")

# Power headroom
PSU_HEADROOM_MULTIPLIER = 1.5  # PSU must cover GPU draw x 1.5
PSU_HEADROOM_PERCENT = 20  # Recommended reserve over the whole-system estimate
GPU_LENGTH_TIGHT_RATIO = 0.9  # Warn when GPU uses more than 90% of case clearance

# Typical draw in watts for parts without a specification to read
COMPONENT_POWER_CONSUMPTION = {
    "motherboard": 30,
    "memory_ddr4": 3,
    "memory_ddr5": 5,
    "storage_nvme": 7,
    "storage_sata": 5,
    "storage_hdd": 10,
    "cooling_air": 5,
    "cooling_aio": 15,
    "case_fans": 10,
}

# Memory types supported per CPU socket
SOCKET_MEMORY_COMPATIBILITY: dict[str, list[str]] = {
    "AM4": ["DDR4"],
    "AM5": ["DDR5"],
    "LGA1700": ["DDR4", "DDR5"],
    "LGA1851": ["DDR5"],
    "LGA1200": ["DDR4"],
    "LGA1151": ["DDR4"],
    "LGA2066": ["DDR4"],
}

# CPU sockets each motherboard chipset can host
CHIPSET_SOCKET_COMPATIBILITY: dict[str, list[str]] = {
    # AMD
    "B450": ["AM4"],
    "B550": ["AM4"],
    "X570": ["AM4"],
    "B650": ["AM5"],
    "B650E": ["AM5"],
    "X670": ["AM5"],
    "X670E": ["AM5"],
    # Intel
    "B560": ["LGA1200"],
    "Z490": ["LGA1200"],
    "Z590": ["LGA1200"],
    "B660": ["LGA1700"],
    "B760": ["LGA1700"],
    "H610": ["LGA1700"],
    "H670": ["LGA1700"],
    "H770": ["LGA1700"],
    "Z690": ["LGA1700"],
    "Z790": ["LGA1700"],
}

# Memory speeds (MT/s) each CPU socket supports at stock settings
SOCKET_MEMORY_SPEEDS: dict[str, list[int]] = {
    "AM4": [2133, 2400, 2666, 2933, 3200, 3600],
    "AM5": [4800, 5200, 5600, 6000, 6400],
    "LGA1700": [2133, 2400, 2666, 2933, 3200, 4800, 5200, 5600],
    "LGA1200": [2133, 2400, 2666, 2933, 3200],
}

# Share of a cooler's rated capacity treated as comfortable headroom
COOLER_SAFETY_MARGIN_LIQUID = 0.9
COOLER_SAFETY_MARGIN_AIR = 0.8
