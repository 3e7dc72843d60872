from __future__ import annotations

import os
from datetime import date


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///collective_burial.db",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Admission policy for consolidation applications
    COLLECTIVE_BURIAL_MAX_PERSONS_PER_APPLICATION = int(
        os.getenv("COLLECTIVE_BURIAL_MAX_PERSONS_PER_APPLICATION", "10")
    )
    COLLECTIVE_BURIAL_MAX_TOTAL_CAPACITY = int(os.getenv("COLLECTIVE_BURIAL_MAX_TOTAL_CAPACITY", "500"))
    COLLECTIVE_BURIAL_WARNING_THRESHOLD = float(os.getenv("COLLECTIVE_BURIAL_WARNING_THRESHOLD", "80"))
    COLLECTIVE_BURIAL_CRITICAL_THRESHOLD = float(os.getenv("COLLECTIVE_BURIAL_CRITICAL_THRESHOLD", "95"))

    # Zero-argument callable returning today's date
    COLLECTIVE_BURIAL_CLOCK = staticmethod(date.today)
