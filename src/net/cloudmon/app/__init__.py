"""
cloudmon Application Layer

Wires the persistence, session and notification components into an aiohttp
application.

Key Components:
- cli.py: entry point and logging setup
- server.py: application factory, startup/shutdown lifecycle and middleware
- config.py: Settings and the AppKeys shared resources are published under
- metrics.py: metrics client abstraction
- handlers/: internal endpoints (liveness and status)
- tasks.py: the session sweep background task

The application uses two middleware layers:
- Statsd middleware for request metrics
- Sentry middleware for error reporting
"""
