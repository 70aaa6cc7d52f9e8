"""
Core utilities shared across the Serenity API.

This package hosts:
- configuration helpers (env vars, paths, feature flags)
- the exception hierarchy and error rendering
- structured logging setup
- password hashing and small URL/context helpers
"""
