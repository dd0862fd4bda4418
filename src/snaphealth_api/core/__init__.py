"""Core configuration, errors and LLM factory."""
