"""licensing/ -- Access key lifecycle and desktop client authorization.

Everything here takes a CredentialStore as its first argument; no module in
this package opens a database on its own.

Layer rule: licensing/ may import from auth/ and core/, never from api/.
"""
