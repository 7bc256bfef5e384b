"""Records, decoding, resolution, lookup indexes and publishing for membership index documents."""

__version__ = "0.1.0"