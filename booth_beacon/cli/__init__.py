"""Booth Beacon command line interface."""
