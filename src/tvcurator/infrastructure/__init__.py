"""Infrastructure layer: persistence, external integrations, media tools, logging."""
