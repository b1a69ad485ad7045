"""
Persistence Layer

Uniform storage for accounts, the admin credential, users, webhook registrations
and usage history, with two interchangeable implementations:

- file.py: JSON files in a local data directory (zero infrastructure)
- relational.py: SQL tables through SQLAlchemy's asyncio engine
- factory.py: one-shot backend selection at startup with permanent fallback to files
- base.py: the PersistenceBackend interface both implementations satisfy
- types.py: domain records returned to callers

The backend is chosen once per process. Callers depend only on PersistenceBackend
and never learn which substrate is active except through the `kind` label used
for status reporting.
"""
