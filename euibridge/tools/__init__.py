"""Command-line tools for euibridge."""
