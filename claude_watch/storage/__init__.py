"""
Storage layer for Claude Watch.

Defines usage records and aggregates, and persists aggregates to SQLite.
"""
