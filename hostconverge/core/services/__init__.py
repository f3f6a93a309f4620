"""Host services: fact gathering."""
