"""Shared models, errors, caching and settings."""
