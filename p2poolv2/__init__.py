"""Share chain, ckpool messages and bitcoin block building for a peer-to-peer mining pool."""

__version__ = "0.1.0"