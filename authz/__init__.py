"""authz/ -- Groups, the permission matrix and per-user permission evaluation."""
