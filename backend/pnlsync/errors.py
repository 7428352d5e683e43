"""
Sheet Sync Exceptions
=====================

Error taxonomy for the credential, provisioning and sync services.

Every exception carries a human-readable `message` and a stable `kind`
(the class name). Routers return both verbatim; the batch runner records
them per client.

RELATED FILES
-------------
- pnlsync/services/*.py: raise these exceptions
- pnlsync/main.py: maps them to HTTP status codes
- pnlsync/services/batch_runner.py: records them per client
"""


class PnlSyncError(Exception):
    """
    Base exception for all sheet-sync errors.

    USAGE:
        try:
            engine.sync(client_id)
        except PnlSyncError as e:
            return {"error": e.kind, "message": e.message}
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        return type(self).__name__


class ClientNotFoundError(PnlSyncError):
    """No client record exists for the given id."""


class AuthExchangeError(PnlSyncError):
    """The provider rejected the authorization code."""


class NotAuthenticatedError(PnlSyncError):
    """The client has no stored access/refresh token pair."""


class RefreshError(PnlSyncError):
    """
    The provider rejected the refresh token.

    Terminal: the stored refresh token is dead and the client has to go
    through the consent screen again.
    """


class ProviderUnavailableError(PnlSyncError):
    """The OAuth token endpoint could not be reached (timeout, DNS, 5xx)."""


class NotProvisionedError(PnlSyncError):
    """The client has no report spreadsheet yet."""


class ProvisionError(PnlSyncError):
    """Creating, formatting or sharing the report spreadsheet failed."""


class SyncWriteError(PnlSyncError):
    """
    Clearing or writing the report data region failed.

    The watermark was not advanced, so the caller owes a retry.
    """


class SyncInProgressError(PnlSyncError):
    """Another sync for the same client held the lock past the wait timeout."""
