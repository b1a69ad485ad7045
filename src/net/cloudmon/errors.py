"""Error taxonomy shared by the persistence, session and notification layers.

Each exception class exposes static constructors carrying a stable error code so
log lines and Sentry events can be grouped without parsing free-form messages.
"""


class ConfigurationUnavailable(Exception):
    """
    A configured database or cache endpoint could not be used at startup.

    Raised by the connect helpers and caught by the backend factories, which
    fall back to the local implementation for the rest of the process lifetime.
    """

    @staticmethod
    def database(msg: str = "") -> "ConfigurationUnavailable":
        return ConfigurationUnavailable(
            f"error-config-1000 Database unavailable: {msg}"
        )

    @staticmethod
    def cache(msg: str = "") -> "ConfigurationUnavailable":
        return ConfigurationUnavailable(f"error-config-1001 Cache unavailable: {msg}")


class RecordCorruption(Exception):
    """A stored secret could not be decrypted or was structurally invalid."""

    @staticmethod
    def undecryptable(msg: str = "") -> "RecordCorruption":
        return RecordCorruption(f"error-record-1000 Unable to decrypt record: {msg}")

    @staticmethod
    def malformed(msg: str = "") -> "RecordCorruption":
        return RecordCorruption(f"error-record-1001 Malformed encrypted record: {msg}")


class ConflictError(Exception):
    """A write collided with an existing record."""


class DuplicateUsernameError(ConflictError):
    def __init__(self, username: str) -> None:
        super().__init__(f"error-store-1000 Username already exists: {username}")
        self.username = username


class StorageFailure(Exception):
    """A write that has no boolean failure channel could not be persisted."""

    @staticmethod
    def write(msg: str = "") -> "StorageFailure":
        return StorageFailure(f"error-store-1001 Unable to persist record: {msg}")


class SessionStoreUnavailable(Exception):
    """The session cache rejected a write, so no token can be issued."""

    @staticmethod
    def write(msg: str = "") -> "SessionStoreUnavailable":
        return SessionStoreUnavailable(
            f"error-session-1000 Unable to store session: {msg}"
        )


class TransportFailure(Exception):
    """
    A single webhook delivery failed.

    Counted per target by the dispatcher and never propagated to the business
    action that triggered the notification.
    """

    @staticmethod
    def bad_status(status: int, body: str) -> "TransportFailure":
        return TransportFailure(f"HTTP {status}: {body}")

    @staticmethod
    def timeout() -> "TransportFailure":
        return TransportFailure("error-webhook-1000 Webhook request timed out")

    @staticmethod
    def connection(msg: str = "") -> "TransportFailure":
        return TransportFailure(f"error-webhook-1001 Webhook request failed: {msg}")
