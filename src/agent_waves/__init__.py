"""Parallel orchestration of stateless CLI agent workers."""

__version__ = "0.1.0"
