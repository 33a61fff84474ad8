"""HTTP API for ragchat."""
