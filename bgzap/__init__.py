"""BGZap: background removal over a local engine or a remote prediction service."""

__version__ = "1.0.0"
