"""Command-line utilities: department administration and demo seeding."""
