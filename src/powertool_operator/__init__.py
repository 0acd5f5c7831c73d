"""Kubernetes operator that attaches diagnostic ephemeral containers to pods."""

__version__ = "0.1.0"
