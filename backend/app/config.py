"""Application configuration."""

import os
from pathlib import Path
from dotenv import load_dotenv

# Base paths
BASE_DIR = Path(__file__).resolve().parent.parent

# Load .env from backend root (before any os.getenv calls)
load_dotenv(BASE_DIR / ".env")
TEMP_DIR = BASE_DIR / "temp"

# Record store: one JSON file per parcel
RECORDS_DIR = Path(os.getenv("NONDH_RECORDS_DIR", str(TEMP_DIR / "parcels")))
RECORDS_DIR.mkdir(parents=True, exist_ok=True)

# Debug trace mode: set NONDH_TRACE=1 to get detailed chain engine logs
TRACE_ENABLED = os.getenv("NONDH_TRACE", "").strip().lower() in ("1", "true", "yes")

# Unit used for zero-valued areas and results that carry no unit of their own
DEFAULT_AREA_UNIT = os.getenv("NONDH_DEFAULT_AREA_UNIT", "sq_m").strip() or "sq_m"

# CORS origins for the presentation layer
ALLOWED_ORIGINS = [
    o.strip()
    for o in os.getenv(
        "NONDH_ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173"
    ).split(",")
    if o.strip()
]
