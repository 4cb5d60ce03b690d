"""Feature packages built on the core infrastructure."""
