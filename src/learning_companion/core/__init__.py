"""Core infrastructure: configuration, logging, errors, persistence and the LLM seam."""
