"""Convert full git clones into blobless clones."""

__version__ = "0.1.0"
