"""
Sticky Notes - an in-memory note engine with durable, self-healing persistence.
This package implements the note collection, a memoized filter/sort query
pipeline, a derived-statistics cache and the lifecycle hooks that keep those
caches bounded. It is exposed to clients as a Model Context Protocol server.

Persistence and cache precomputation run in background threads; the note
collection itself has a single owner.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("stickynotes")
except PackageNotFoundError:
    __version__ = "0.3.0"
