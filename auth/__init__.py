"""auth/ -- Credential and session core for CredKeep.

Layer rule: auth/ imports from core/ and third-party libraries only.
It does NOT import from api/ or notify/. Email delivery reaches the auth
service as an injected collaborator.
api/ imports from auth/, not the other way around.
"""
