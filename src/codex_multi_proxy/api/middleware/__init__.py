"""Middleware and exception handlers for the HTTP API."""
