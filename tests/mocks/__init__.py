"""
Mock implementations for testing crosskit components.

This package provides an in-memory execution backend so that graphs,
verification and publishing can be tested without Docker.
"""

from .backend import FakeBackend, macho_descriptor

__all__ = [
    "FakeBackend",
    "macho_descriptor",
]
