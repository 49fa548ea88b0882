"""
Core modules for Claude Watch.

This package contains token accounting, pricing resolution, cost
calculation and usage aggregation.
"""
