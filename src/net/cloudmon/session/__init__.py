"""
Session storage for dashboard logins.

store.py holds the SessionStore interface, its in-memory and Redis
implementations, and `create_session_store`, which picks one at startup.
"""
