"""zepctl: administrative command-line client for Zep knowledge graphs."""

__version__ = "0.3.0"
