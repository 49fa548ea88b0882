"""
Command-line interface for Claude Watch.
"""
