"""Resolve YouTube ids and search queries into playable audio streams."""
