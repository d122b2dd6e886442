"""Utility modules for msil-comparator."""
