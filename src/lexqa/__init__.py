"""Provenance-preserving question answering over a fixed corpus of legal PDFs."""

__version__ = "0.1.0"
