"""Runtime schema reflection.

This package reads binary schema blobs, derives columnar schemas from
them, and decodes or encodes record payloads without per-kind code.
"""
