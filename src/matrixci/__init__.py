"""
matrixci — toolchain matrix CI runner

File: src/matrixci/__init__.py
Last updated: 2026-10-18

Purpose
- Package root. Installs a native dependency once, runs an ordered stage sequence for every
  toolchain variant, and reduces the outcomes to a single Green/Red verdict.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
