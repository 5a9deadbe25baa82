"""store/ -- SQLAlchemy Core repositories for users, identities, logins and memberships."""
