"""orgtree - ordered provisioning of AWS Organizations hierarchies."""

__version__ = "0.1.0"
