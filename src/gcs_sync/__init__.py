"""Mirror local directory trees into Google Cloud Storage."""

__version__ = "1.0.0"
