"""Event producers feeding the bus."""
