"""High-level wiring of producers and archivers."""
