"""Hybrid (vector + BM25) document search engine."""

__version__ = "0.1.0"
