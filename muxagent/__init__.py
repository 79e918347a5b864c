"""Machine-side relay library: domain types, owner-only directories, master key storage and the encrypted relay client."""

__version__ = "0.1.0"