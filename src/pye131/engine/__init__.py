"""Universe session engine.

This package is the single source of truth for which sources are
registered on a universe, which priority wins, and what the output
buffer holds.
"""
