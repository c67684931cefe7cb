"""Database mixins."""
