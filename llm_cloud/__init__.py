"""
LLM Cloud Package

This package contains the model gateway and the provider functions that build its clients.
"""

from .gateway import ModelGateway

__all__ = ['ModelGateway']
