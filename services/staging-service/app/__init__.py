"""Staging service: review and import AI-extracted exercises."""
