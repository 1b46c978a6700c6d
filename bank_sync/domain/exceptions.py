"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class GatewayUnavailable(DomainException):
    """Aggregator gateway call failed (transport, provider or payload error)"""

    pass


class ConnectionNotFound(DomainException):
    """Bank connection does not exist or belongs to another user"""

    pass


class ConnectionNotActive(DomainException):
    """Bank connection exists but its consent is not active"""

    pass


class SessionFailed(DomainException):
    """Data-fetch session reached a failed status"""

    pass


class SessionTimeout(DomainException):
    """Data-fetch session did not finish within the polling budget"""

    pass


class InvalidStatusTransition(DomainException):
    """Requested connection status change is not allowed by the consent lifecycle"""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move connection from {current} to {target}")
        self.current = current
        self.target = target
