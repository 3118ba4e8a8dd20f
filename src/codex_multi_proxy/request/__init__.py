"""Outbound request shaping and upstream response normalization."""
