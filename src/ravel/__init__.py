"""ravel - branch-state audits for multi-package workspaces."""

__version__ = "0.1.0"
