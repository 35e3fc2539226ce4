"""Skill execution runtime: governed compute, classify and reason pipelines."""

__version__ = "0.1.0"
