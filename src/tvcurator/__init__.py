"""tvcurator - TV library curation dashboard backend."""

__version__ = "0.1.0"
