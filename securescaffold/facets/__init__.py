"""Security controls applied to a scaffolded repository.

This package contains:
- The closed facet catalog and its application order
- Deterministic renderers for file-based facets
- Handlers that apply facets and read their current state back
"""
