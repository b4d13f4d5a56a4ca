"""Core components of marketcharts."""
