"""Client for the Smart View remote-control protocol of 2014+ Samsung TVs."""

from samtv.errors import SamtvError
from samtv.pairing import PairingOutcome
from samtv.session import ConnectionState, SmartViewSession

__version__ = "0.1.0"

__all__ = [
    "ConnectionState",
    "PairingOutcome",
    "SamtvError",
    "SmartViewSession",
    "__version__",
]
