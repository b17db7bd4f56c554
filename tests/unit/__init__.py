"""Unit tests for chainplan.

Unit tests exercise individual components against the simulated network
and in-memory or temporary-directory journals. No node is required.

Run with: pytest tests/unit/ -v
"""
