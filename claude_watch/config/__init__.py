"""
Configuration for Claude Watch.
"""
