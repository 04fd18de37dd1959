"""Trigger queue consumer and publisher."""
