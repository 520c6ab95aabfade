"""Secure-by-default repository scaffolding.

Creates a GitHub repository, bootstraps a Go or Maven module inside it,
applies a fixed set of security controls ("facets") and records the result
in a state file committed to the repository itself.
"""

__version__ = "0.1.0"
