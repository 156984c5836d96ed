class SessionError(Exception):
    """Base for every error scoped to a watch session. None of these are fatal."""


class TransientFetchError(SessionError):
    """A source adapter or the network failed; re-issuing the command may succeed."""


class ResolutionError(TransientFetchError):
    """The stream ladder for an episode could not be fetched."""


class InvalidSelectionError(SessionError):
    """Out-of-range index, unknown label or an operation the source does not support."""


class BoundaryReached(SessionError):
    """next/previous was asked to move past the first or last episode."""


class NoStreamsError(SessionError):
    """The source answered but offered no playable stream."""


class NoEpisodesError(SessionError):
    """The selected series has no episodes on this source."""


class LaunchFailure(SessionError):
    """The player could not be started or never answered on its control socket."""


class IPCError(SessionError):
    """A single request on the player's control socket failed."""


class PresenceError(SessionError):
    """The presence service rejected an update even after reconnecting."""


class HistoryStoreError(SessionError):
    """The history file could not be read or written."""
