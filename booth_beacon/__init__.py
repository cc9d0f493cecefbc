"""Booth Beacon - source ingestion and extraction pipeline for photo booth venues."""

__version__ = "0.1.0"
