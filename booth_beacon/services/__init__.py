"""External service clients for Booth Beacon."""
