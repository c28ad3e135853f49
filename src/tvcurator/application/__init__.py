"""Application layer: services and the background task core."""
