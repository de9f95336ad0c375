"""markcdn - Responsive images for markdown documents, served from Uploadcare."""

__version__ = "0.1.0"
