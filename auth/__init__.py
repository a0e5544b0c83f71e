"""auth/ -- Credentials, tokens, user records and the auth orchestrator.

Layer rule: auth/ does NOT import from api/. api/ imports from auth/, not the
other way around. auth/service.py wires in core/ and sessions/, and
auth/passwords.py reads the bcrypt cost from core/; the token issuer and user
store take their configuration as arguments.
"""
