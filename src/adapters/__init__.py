"""Integrations behind the core ports: SQLite storage, HTTP feed fetching and Telegram delivery."""
