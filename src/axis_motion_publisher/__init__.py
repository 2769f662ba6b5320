"""Publish AXIS camera motion recordings to the Alexa Event Gateway."""

__version__ = "1.0.0"
