"""Aether: per-workspace container infrastructure for Jujutsu workspaces."""

__version__ = "0.1.0"
