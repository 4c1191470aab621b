"""LLM access: HTTP client, response parsing and role cascades."""
