"""Custom exceptions for l4scan"""


class ScanError(Exception):
    """Exception raised for scan-related errors"""

    pass


class ValidationError(Exception):
    """Exception raised for validation errors"""

    pass


class PortSpecError(ValidationError):
    """Exception raised when a port specification cannot be parsed"""

    def __init__(self, spec: str, message: str = None):
        if message is None:
            message = f"Invalid port specification: {spec!r}"
        super().__init__(message)
        self.spec = spec


class ConfigurationError(ScanError):
    """Exception raised when the local scan configuration cannot be satisfied"""

    pass


class InterfaceNotFound(ConfigurationError):
    """Exception raised when no interface matches the requested name"""

    def __init__(self, interface: str, message: str = None):
        if message is None:
            message = f"Interface `{interface}` not found"
        super().__init__(message)
        self.interface = interface


class NoAddressOfFamily(ConfigurationError):
    """Exception raised when an interface has no address of the requested family"""

    def __init__(self, interface: str, family: str, message: str = None):
        if message is None:
            message = f"No {family} address found on interface `{interface}`"
        super().__init__(message)
        self.interface = interface
        self.family = family


class CaptureUnavailable(ScanError):
    """Exception raised when the packet capture handle cannot be opened"""

    def __init__(self, interface: str, message: str = None):
        if message is None:
            message = f"Cannot capture on interface `{interface}`"
        super().__init__(message)
        self.interface = interface


class ResolutionError(ScanError):
    """Exception raised when a target host cannot be resolved"""

    def __init__(self, host: str, message: str = None):
        if message is None:
            message = f"Could not resolve host '{host}'"
        super().__init__(message)
        self.host = host
