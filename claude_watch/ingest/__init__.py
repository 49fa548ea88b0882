"""
Log ingestion for Claude Watch.

Provides discovery, parsing and orchestration of usage log reads.
"""

from .parser import parse_file, parse_line
from .pipeline import IngestionPipeline
from .scanner import LogScanner

__all__ = ["IngestionPipeline", "LogScanner", "parse_file", "parse_line"]
