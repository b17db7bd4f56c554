"""Integration tests for chainplan.

Integration tests run loader, resolver, executor and file journals together
against the simulated network.

Run with: pytest tests/integration/ -v -m integration
"""
