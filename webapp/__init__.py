"""Web and runtime entrypoints."""
