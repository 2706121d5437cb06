"""Music drive indexer — resumable background crawler for OneDrive music libraries."""

__version__ = "0.1.0"
