"""
Error taxonomy for peer provisioning.

Everything raised from the mutation path derives from WgManagerError so the
command line can report it and carry on. BootstrapError is the only one that
ends the process.
"""


class WgManagerError(Exception):
    """Base class for all wg-manager errors"""
    pass


class ValidationError(WgManagerError):
    """Invalid username or limit input"""
    pass


class DuplicateUser(WgManagerError):
    """Username already present in the registry"""

    def __init__(self, username: str):
        super().__init__(f"User '{username}' already exists")
        self.username = username


class DuplicateAddress(WgManagerError):
    """Address already held by another peer"""
    pass


class NotFound(WgManagerError):
    """Username absent from the registry"""

    def __init__(self, username: str):
        super().__init__(f"User '{username}' not found")
        self.username = username


class KeyGenFailure(WgManagerError):
    """External keypair generation failed"""
    pass


class AllocationExhausted(WgManagerError):
    """No free address left in the subnet"""
    pass


class RegistryCorrupt(WgManagerError):
    """Registry file cannot be parsed or breaks an invariant"""
    pass


class SyncFailure(WgManagerError):
    """
    Writing the interface config or a client profile failed.

    Attributes:
        reconciled: True if a reconcile pass ran afterwards and succeeded
    """

    def __init__(self, message: str, reconciled: bool = False):
        super().__init__(message)
        self.reconciled = reconciled


class ReloadFailed(WgManagerError):
    """The live interface could not be updated"""

    def __init__(self, detail: str):
        super().__init__(f"Failed to apply interface configuration: {detail}")
        self.detail = detail


class LockTimeout(WgManagerError):
    """Another invocation holds the mutation lock"""
    pass


class BootstrapError(WgManagerError):
    """Installation or privilege check failed"""
    pass


class EndpointUnavailable(WgManagerError):
    """The server's public endpoint could not be determined"""
    pass


class ServerNotInitialized(WgManagerError):
    """Server keys are missing, the install step has not run"""
    pass


class StorageError(WgManagerError):
    """A state file could not be read or written"""

    def __init__(self, path, error: OSError):
        super().__init__(f"Cannot access {path}: {error.strerror or error}")
        self.path = path
        self.error = error
