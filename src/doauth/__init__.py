"""py-doauth: delegated-access control plane for encrypted vault data."""

__version__ = "0.1.0"
