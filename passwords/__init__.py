"""passwords/ -- Password hashing and the strength validator chain."""
