"""Adapters bind the core ports to Telegram, Playwright, SQLite and MongoDB."""
