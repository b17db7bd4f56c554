"""chainplan - declarative, resumable smart-contract deployments."""

__version__ = "0.1.0"
