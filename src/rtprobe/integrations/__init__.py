"""Third-party service adapters."""
