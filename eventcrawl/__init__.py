"""Event crawl pipeline: scout, scrape, enrich, deduplicate and index local events."""

__version__ = "0.1.0"
