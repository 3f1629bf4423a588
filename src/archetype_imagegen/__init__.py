"""Serialized image-generation job coordination for quiz archetypes."""

__version__ = "0.1.0"
