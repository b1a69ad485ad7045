"""
Secret handling for stored credentials.

- cipher.py: AES-256-GCM encryption of provider API tokens at rest
- passwords.py: bcrypt hashing of the admin credential, with legacy clear-text support
"""
