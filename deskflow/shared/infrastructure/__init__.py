"""
Infrastructure Layer
=====================

Low-level technical concerns:
- Logging setup
- Per-entity lock registry
"""
