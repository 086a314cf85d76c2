"""Shared settings, identifier namespaces and relational store schema."""

__version__ = "0.1.0"
