"""Realtime connectivity diagnostic engine and its caller-side helpers."""
