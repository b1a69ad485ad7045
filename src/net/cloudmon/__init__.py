"""
cloudmon - account monitoring dashboard backend

This package holds the credential and session persistence core of the
dashboard: where accounts, users, webhooks and usage history are stored, how
account tokens are encrypted at rest, how dashboard sessions are kept, and how
monitoring events are fanned out to webhooks.

Key Components:
- store: PersistenceBackend with JSON file and SQLAlchemy implementations
- model: ORM tables used by the relational backend
- session: in-memory and Redis session stores
- crypto: AES-GCM token sealing and bcrypt password hashing
- credentials: CredentialManager, the encryption-aware façade over storage
- notify: webhook dispatcher and canned alert payloads
- app: aiohttp wiring, settings, metrics and background tasks

Everything runs with zero external infrastructure and upgrades to PostgreSQL
and Redis at startup when they are configured and reachable.
"""
