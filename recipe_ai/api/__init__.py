"""HTTP API for the recommendation core."""
