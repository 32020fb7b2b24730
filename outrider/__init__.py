"""Outrider - copies annotated secrets from a Rancher manager cluster to its downstream clusters."""

__version__ = "0.1.0"
