"""Thread-safe in-memory stores."""
