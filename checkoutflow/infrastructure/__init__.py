"""Infrastructure layer - settings, logging and concrete adapters for the ports."""
