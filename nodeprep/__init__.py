"""nodeprep - prepare Ubuntu hosts for Kubernetes membership."""

__version__ = "0.1.0"
