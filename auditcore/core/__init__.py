"""Cross-cutting runtime helpers (logging, process state)."""
