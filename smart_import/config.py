from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# DB SQLite su file nella root del progetto, se non configurato altrimenti
DEFAULT_DB_PATH = Path(__file__).resolve().parents[1] / "smart_import.sqlite"
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DEFAULT_DB_PATH}")

# In produzione: mettila in variabile d'ambiente
JWT_SECRET = os.getenv("JWT_SECRET", "CHANGE_ME_DEV_SECRET")
JWT_ALG = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", "60"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "console")  # console | json

# Anteprima (dry-run): righe validate / righe restituite
PREVIEW_ROW_LIMIT = int(os.getenv("IMPORT_PREVIEW_ROWS", "100"))
PREVIEW_SAMPLE_SIZE = int(os.getenv("IMPORT_PREVIEW_SAMPLE", "20"))

DEFAULT_IMPORT_FILENAME = "unknown.csv"
