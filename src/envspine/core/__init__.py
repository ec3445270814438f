"""Shared primitives: errors, logging, configuration, hashing and timestamps."""
