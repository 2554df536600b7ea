# src/kastrace/core/__init__.py
"""Core infrastructure: configuration, logging, time helpers."""
