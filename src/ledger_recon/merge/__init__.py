"""Duplicate detection and merge engine."""

from .engine import DuplicateCandidate, DuplicateGroup, MergeEngine

__all__ = ["DuplicateCandidate", "DuplicateGroup", "MergeEngine"]
