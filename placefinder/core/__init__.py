"""Parsing, matching, merging and storage."""
