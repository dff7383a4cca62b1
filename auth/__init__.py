"""auth/ -- Authentication and credential-lifecycle core for Tourbook.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/, mail/ or core/. Secrets and lifetimes arrive as
constructor arguments; api/ imports from auth/, not the other way around.
"""
