"""api/ -- FastAPI HTTP surface over the auth core."""
