"""Request engine, timing, timeout and retry machinery."""
