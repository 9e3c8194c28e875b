"""hmern — encrypted credential settings for the admin dashboard backend."""

__version__ = "0.3.0"
