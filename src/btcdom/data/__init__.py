"""Market data sources and result sinks."""
