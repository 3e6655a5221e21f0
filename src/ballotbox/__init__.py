"""ballotbox — weighted election engine with registration and delegation."""

__version__ = "0.1.0"

from ballotbox.errors import ElectionError, ErrorKind, WeightUnderflowError
from ballotbox.host import Host
from ballotbox.store import ElectionStore, ServiceResult

__all__ = [
    "__version__",
    "ElectionError",
    "ElectionStore",
    "ErrorKind",
    "Host",
    "ServiceResult",
    "WeightUnderflowError",
]
