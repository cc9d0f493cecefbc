"""Core domain models, enums and errors for Booth Beacon."""
