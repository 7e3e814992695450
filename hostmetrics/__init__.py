"""Host resource metrics exporter for pull-based scrapers."""

__version__ = "0.1.0"
