"""pickbridge accounting integration core."""
