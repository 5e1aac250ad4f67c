"""
shared/__init__.py

Shared models, errors and helpers used across the assistant.
"""
