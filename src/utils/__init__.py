"""Shared helpers for text similarity and score handling."""

from .text import domain_similarity, jaccard, normalize_title, normalize_url, tokenize, url_host
from .validation import clamp_score, mean

__all__ = [
    "clamp_score",
    "domain_similarity",
    "jaccard",
    "mean",
    "normalize_title",
    "normalize_url",
    "tokenize",
    "url_host",
]
