"""Text-generation layer: LiteLLM-backed LLM service and the transform catalogue."""
