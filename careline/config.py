"""
Careline - Configuration
Environment variables and settings
"""
import os
from pathlib import Path
from dotenv import load_dotenv

# Base directory
BASE_DIR = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
load_dotenv(BASE_DIR / '.env')

# Database Configuration
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "careline")
DB_USER = os.getenv("DB_USER", "careline_user")
DB_PASSWORD = os.getenv("DB_PASSWORD", "")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
)

# API Configuration
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))
DEBUG = os.getenv("DEBUG", "False").lower() == "true"

# Clinical engine
# Optional JSON file replacing the built-in indicator catalog
QOF_CATALOG_PATH = os.getenv("QOF_CATALOG_PATH", "")
# Version label for QOF_CATALOG_PATH (defaults to the file's own "version")
QOF_CATALOG_VERSION = os.getenv("QOF_CATALOG_VERSION", "")
EVALUATION_WORKERS = int(os.getenv("EVALUATION_WORKERS", "4"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "logs/careline.log")
# Skipped evaluations and rejected catalogs, kept apart from request logs
ENGINE_LOG_FILE = os.getenv("ENGINE_LOG_FILE", "logs/clinical_engine.log")
ENGINE_LOG_LEVEL = os.getenv("ENGINE_LOG_LEVEL", LOG_LEVEL)
