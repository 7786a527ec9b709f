"""Embedding index used by vault search."""
