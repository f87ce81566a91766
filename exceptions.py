class StoreError(Exception):
    """Base error for the storefront. The message is shown to users as-is."""


class GatewayError(StoreError):
    """The remote database rejected a call or could not be reached."""


class WriteError(StoreError):
    """An insert/update/delete issued by the store did not go through."""


class InvalidReferenceError(StoreError):
    """A payload points at an entity that is not loaded (e.g. unknown category)."""
