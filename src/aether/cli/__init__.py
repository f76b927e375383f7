"""Command-line interface (``ajj``)."""
