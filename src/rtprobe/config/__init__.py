"""Configuration helpers for rtprobe."""
