# app/core/config.py
"""
Application configuration - loads from environment variables.
Single source of truth for all settings.
"""
import os
from typing import Optional
from urllib.parse import quote_plus
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables FIRST
BASE_DIR = Path(__file__).resolve().parent.parent.parent
env_path = BASE_DIR / '.env'
load_dotenv(dotenv_path=env_path)

# ────────────────────────────────────────────
# CTA Flow persistence API
# ────────────────────────────────────────────
CTA_FLOW_API_BASE_URL: str = os.getenv("CTA_FLOW_API_BASE_URL", "http://localhost:7113/api")
CTA_FLOW_API_TOKEN: str = os.getenv("CTA_FLOW_API_TOKEN", "")

# Empty means "use the transport default"
_timeout = os.getenv("CTA_FLOW_API_TIMEOUT", "")
CTA_FLOW_API_TIMEOUT: Optional[float] = float(_timeout) if _timeout else None

TEMPLATE_CATALOG_BASE_URL: str = os.getenv("TEMPLATE_CATALOG_BASE_URL") or CTA_FLOW_API_BASE_URL

# ────────────────────────────────────────────
# Auto-layout
# ────────────────────────────────────────────
LAYOUT_RANK_SEP: float = float(os.getenv("LAYOUT_RANK_SEP", "90"))
LAYOUT_NODE_SEP: float = float(os.getenv("LAYOUT_NODE_SEP", "50"))
LAYOUT_MARGIN: float = float(os.getenv("LAYOUT_MARGIN", "20"))
NODE_DEFAULT_WIDTH: float = float(os.getenv("NODE_DEFAULT_WIDTH", "260"))
NODE_DEFAULT_HEIGHT: float = float(os.getenv("NODE_DEFAULT_HEIGHT", "140"))

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

# ────────────────────────────────────────────
# Tenant / Multi-tenant
# ────────────────────────────────────────────
DEFAULT_TENANT_ID: str = os.getenv("TENANT_ID") or os.getenv("DEFAULT_TENANT_ID") or "default"

# Editor sessions idle longer than this (seconds) are closed; 0 keeps them forever
SESSION_IDLE_TTL: float = float(os.getenv("SESSION_IDLE_TTL", "3600"))

# ────────────────────────────────────────────
# Database Configuration (editor snapshots)
# ────────────────────────────────────────────
DB_USER = os.getenv("DB_USER", "postgres")
DB_PASSWORD = os.getenv("DB_PASSWORD", "")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "flow_builder_db")
DATABASE_URL = os.getenv("DATABASE_URL")

# Build DATABASE_URL
if not DATABASE_URL:
    encoded_password = quote_plus(DB_PASSWORD)
    DATABASE_URL = f"postgresql://{DB_USER}:{encoded_password}@{DB_HOST}:{DB_PORT}/{DB_NAME}"

# ────────────────────────────────────────────
# JWT Configuration
# ────────────────────────────────────────────
JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "")
JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")

if not JWT_SECRET_KEY:
    import warnings
    warnings.warn("JWT_SECRET_KEY not set!")

# ────────────────────────────────────────────
# Settings Class
# ────────────────────────────────────────────
class Settings:
    DATABASE_URL: str = DATABASE_URL
    CTA_FLOW_API_BASE_URL: str = CTA_FLOW_API_BASE_URL
    CTA_FLOW_API_TOKEN: str = CTA_FLOW_API_TOKEN
    CTA_FLOW_API_TIMEOUT: Optional[float] = CTA_FLOW_API_TIMEOUT
    TEMPLATE_CATALOG_BASE_URL: str = TEMPLATE_CATALOG_BASE_URL
    LAYOUT_RANK_SEP: float = LAYOUT_RANK_SEP
    LAYOUT_NODE_SEP: float = LAYOUT_NODE_SEP
    LAYOUT_MARGIN: float = LAYOUT_MARGIN
    NODE_DEFAULT_WIDTH: float = NODE_DEFAULT_WIDTH
    NODE_DEFAULT_HEIGHT: float = NODE_DEFAULT_HEIGHT
    JWT_SECRET_KEY: str = JWT_SECRET_KEY
    JWT_ALGORITHM: str = JWT_ALGORITHM
    DEFAULT_TENANT_ID: str = DEFAULT_TENANT_ID
    SESSION_IDLE_TTL: float = SESSION_IDLE_TTL
    LOG_LEVEL: str = LOG_LEVEL

settings = Settings()
