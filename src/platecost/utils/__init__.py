"""Utility modules for Plate Cost."""
