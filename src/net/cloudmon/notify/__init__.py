"""
Webhook notifications.

- dispatcher.py: in-memory registration set, signed concurrent delivery, test sends
- alerts.py: fire-and-forget helpers for the events raised by the monitoring flows
"""
