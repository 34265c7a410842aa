"""Cached transcription pipeline for recorded meeting media."""

__version__ = "0.1.0"
