"""Logging, resource sampling, and report persistence."""
