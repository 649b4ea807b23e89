"""Local worker implementations used for dry runs and tests."""
