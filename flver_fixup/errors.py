"""Exception types raised across the repair engine and its codec boundary."""


class FlverFixupError(Exception):
    pass


class DecodeError(FlverFixupError):
    """The codec could not turn asset bytes into a Model."""


class EncodeError(FlverFixupError):
    """The codec could not serialize a repaired Model."""


class RepairError(FlverFixupError):
    """A repair pass found the model in a state it cannot recover from."""
