"""Core package for the bank deal scraping engine."""

__all__ = [
    "config",
    "errors",
    "models",
    "source_config",
    "templates",
    "fetcher",
    "locator",
    "extractor",
    "validator",
    "reconciler",
    "pipeline",
    "orchestrator",
    "store",
    "db",
    "health",
    "service",
    "scheduler",
    "runtime",
    "app",
    "cli",
]
