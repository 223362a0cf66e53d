# backend/doccredits/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///doccredits.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Upper bound for every credit transaction (allocation, settlement, identity creation)
    CREDIT_TRANSACTION_TIMEOUT_SECONDS = float(os.environ.get("CREDIT_TRANSACTION_TIMEOUT_SECONDS", "10"))

    # SQLite writers wait on each other instead of failing fast with "database is locked".
    # Unset means "wait up to the transaction bound"; create_app never lets it exceed that bound.
    # Ignored by other drivers because connect_args is only applied for sqlite URLs in create_app.
    SQLITE_BUSY_TIMEOUT_SECONDS = (
        float(os.environ["SQLITE_BUSY_TIMEOUT_SECONDS"])
        if os.environ.get("SQLITE_BUSY_TIMEOUT_SECONDS")
        else None
    )

    # Callables resolving the external principal and active plans from a request.
    # None means the trusted-header defaults in decorators.py.
    PRINCIPAL_PROVIDER = None
    ENTITLEMENT_PROVIDER = None
