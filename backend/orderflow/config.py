# backend/orderflow/config.py
from __future__ import annotations
import os


def _optional_float(name: str) -> float | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    return float(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/orderflow.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///orderflow.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Evidence images a checker may attach to one line
    ORDERFLOW_MAX_LINE_IMAGES = int(os.environ.get("ORDERFLOW_MAX_LINE_IMAGES", "3"))

    # Claims older than this may be taken over by another actor of the same role.
    # Unset means claims never go stale.
    ORDERFLOW_CLAIM_STALE_AFTER_HOURS = _optional_float("ORDERFLOW_CLAIM_STALE_AFTER_HOURS")

    ORDERFLOW_RETRY_ATTEMPTS = int(os.environ.get("ORDERFLOW_RETRY_ATTEMPTS", "3"))
