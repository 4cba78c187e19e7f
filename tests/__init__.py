"""
Test suite for the CSV Migration Service.

Run all tests: pytest
Run unit tests only: pytest tests/unit/
Run specific file: pytest tests/unit/test_csv_detector.py -v
"""
