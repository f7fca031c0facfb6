"""Building blocks for an image proxy server: signatures, routing, headers, SVG, BMP and ICO."""

__version__ = "3.23.0"