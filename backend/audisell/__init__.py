"""Audisell API: voice recordings to Instagram carousels."""
