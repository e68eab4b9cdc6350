"""Caller-side access through the generated objects."""

from authrules.runtime.access import DataApi

__all__ = ["DataApi"]
