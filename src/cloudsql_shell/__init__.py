"""Run a database client through a short-lived Cloud SQL Auth Proxy."""

__version__ = "0.1.0"
