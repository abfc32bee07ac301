"""Cross-cutting domain primitives (exceptions)."""
