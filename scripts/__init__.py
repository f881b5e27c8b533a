"""Command-line tools for the fabrication core."""
