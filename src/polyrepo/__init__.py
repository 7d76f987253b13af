"""polyrepo - sync and build a workspace of related repositories."""

__version__ = "0.1.0"
