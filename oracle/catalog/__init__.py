# oracle/catalog/__init__.py
"""
Catalog module: local mirror of the Steam catalog, its Web API client and the
browse cache.

Submodules are imported directly (oracle.catalog.store, ...); schemas import
oracle.catalog.tag_map, so this package keeps no eager imports.
"""
