"""Integration tests for grocerypricing.

These tests require external services:
- PostgreSQL for the price cache table
- Redis as the Celery broker and result backend

Run with: pytest tests/integration/ -v -m integration
Skip with: pytest -m "not integration"
"""
