"""Data persistence layer."""
