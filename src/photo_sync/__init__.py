"""Photo sync engine: queue device photos and upload them to the photos server."""

__version__ = "0.1.0"
