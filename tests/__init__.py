"""
Test suite for the BrandingLab operations API.

Run all tests: pytest
Run with coverage: pytest --cov=. --cov-report=html
Run unit tests only: pytest tests/unit/
Run specific file: pytest tests/unit/test_column_mapper.py -v
"""
