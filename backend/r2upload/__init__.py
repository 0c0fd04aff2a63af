"""Direct-to-storage uploads through presigned URLs."""
__version__ = "0.1.0"
