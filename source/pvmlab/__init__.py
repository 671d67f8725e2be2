"""pvmlab: provisioning VM lab tooling for the developer workstation."""

__version__ = "0.1.0"
