"""Structured logging and the APScheduler wrapper."""
