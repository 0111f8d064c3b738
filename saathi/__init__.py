"""Saathi: a streaming chat companion for student mental wellness."""

__version__ = "0.3.0"
