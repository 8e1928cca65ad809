"""Feed aggregation and caching engine for engineering-blog news."""
