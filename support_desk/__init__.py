"""HR and IT support desk: retrieval-augmented chat with automatic tickets."""

__version__ = "1.0.0"
