"""
Claude Watch.

Token usage and cost tracking over local Claude conversation logs.
"""

__version__ = "0.1.0"
