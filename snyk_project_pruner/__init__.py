"""Prune stale projects and empty targets from a Snyk organization."""

__version__ = "0.1.0"
