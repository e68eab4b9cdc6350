"""
Repository layer.

Registry tables, artifact records and the backing store's generated
objects, behind the protocols in `authrules.repos.interfaces`.
"""
