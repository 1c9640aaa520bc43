"""Composable lazy graph layers for transformer-style architectures."""

__version__ = "0.1.0"
