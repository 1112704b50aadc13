"""Domain types for realtime diagnostics."""
