"""Local in-memory cache of experiment, layer and bucket configuration for A/B testing clients."""

__version__ = "0.1.0"
__all__ = ["models", "roaring", "indexing", "cache"]