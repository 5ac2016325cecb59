"""Core domain package for rollcall.

Core contains parsing, query normalization, ingestion and portal replay logic
without any chat client, browser or storage-specific code, keeping the
business logic portable.
"""
