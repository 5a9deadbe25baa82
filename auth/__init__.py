"""auth/ -- Authenticators, the Auth facade and the flows built on them.

Layer rule: auth/ may import from core/, passwords/, store/ and authz/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
