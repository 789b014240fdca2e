# tlsscout/exceptions.py

class ScannerError(Exception):
    """Base class for scanner exceptions."""
    pass

class ConfigurationError(ScannerError):
    """Raised when scan parameters are rejected before a run starts."""
    pass

class HostResolutionError(ScannerError):
    """Raised when a domain cannot be resolved to an address."""
    pass

class GeoDatabaseError(ScannerError):
    """Raised when the GeoIP database cannot be checked, fetched or opened."""
    pass
