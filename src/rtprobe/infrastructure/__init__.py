"""Infrastructure concerns shared by the diagnostics engine."""
