"""
REST API for the Paper Trading Engine
"""

from .main import create_app, build_engine

__all__ = ['create_app', 'build_engine']
