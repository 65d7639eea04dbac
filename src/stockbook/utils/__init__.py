"""
Utility modules for Stockbook.

This package contains helper functions and utilities used throughout
the application.
"""
