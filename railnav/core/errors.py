"""Error conditions surfaced by the navigation core."""


class RailnavError(Exception):
    pass


class LocationUnavailableError(RailnavError):
    """Neither a fresh fix nor a recent last-known sample could be obtained."""


class LocationPermissionError(LocationUnavailableError):
    pass


class TopologyError(RailnavError):
    pass


class MirroringError(RailnavError):
    pass


class PublisherNotFoundError(MirroringError):
    def __init__(self, token: str) -> None:
        super().__init__(f"No mirroring session published under token {token!r}")
        self.token = token


class PublisherNotReadyError(MirroringError):
    def __init__(self, token: str) -> None:
        super().__init__(f"Mirroring session {token!r} has no line or bound selected yet")
        self.token = token


class RoleConflictError(MirroringError):
    """A device cannot publish and subscribe at the same time."""
