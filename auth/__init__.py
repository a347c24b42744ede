"""auth/ -- Credential verification and session token lifecycle for Shopfront.

Layer rule: auth/ imports only stdlib, third-party libraries, and the
Settings type from core/. It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
