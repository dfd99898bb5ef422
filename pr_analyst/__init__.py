"""Agentic pull-request analysis: per-file review, synthesis, chunked fallback."""
