"""
Backend package for the marketplace dashboard API.

This package provides a FastAPI application on top of a record store
abstraction so route handlers never touch the physical layout of the
entity collections (flat JSON documents or hierarchical directories).
"""
