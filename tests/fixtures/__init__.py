"""Shared test fixtures package.

Provides helpers and function-scoped fixtures for the unit and e2e suites.
"""
