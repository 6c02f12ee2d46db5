"""Developer tools: the bundled mock target service."""
