"""Core infrastructure shared by the knowledge and sandbox packages."""
