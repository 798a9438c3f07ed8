# The MIT License (MIT)
# Copyright © 2025 Entrius

"""
Backport CLI

Usage:
    backport run --sha <sha> -b <branch>   # backport one commit
    backport config                        # show configuration
"""

from .main import cli

__all__ = ['cli']
