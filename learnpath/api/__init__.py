"""HTTP API for the learnpath engine."""
