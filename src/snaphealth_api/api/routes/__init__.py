"""API routes."""

from . import analyze, meals

__all__ = ["analyze", "meals"]
