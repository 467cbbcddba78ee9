"""StoreForge test suite."""
