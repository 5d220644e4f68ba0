"""auth/ -- Credential store, token codec, refresh-token whitelist and session manager.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/ or core/. Configuration (signing secret, bcrypt
cost, database URL) is passed in by whoever constructs these objects.
"""
