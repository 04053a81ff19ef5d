"""Network builders and utilities for testing and demonstration."""
