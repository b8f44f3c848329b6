"""Gazetteer place search: corpus matching, remote sources and result merging."""
