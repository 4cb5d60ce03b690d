"""Infrastructure layer: configuration, logging, errors, snapshot dispatch."""
