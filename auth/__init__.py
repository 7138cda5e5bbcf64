"""auth/ -- Accounts, credentials and request authentication for KeyPortal.

Layer rule: auth/ imports only core/, stdlib and third-party libraries.
It does NOT import from api/ or licensing/.
api/ and licensing/ import from auth/, not the other way around.
"""
