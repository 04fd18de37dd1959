"""Audio extraction and link download."""
