"""
Deployment primitives.

- UpdateCoordinator: single-flight update sequence behind the trigger endpoint
- fetch_archive / extract_archive: stream the release tarball into the deployment tree
- StackController / ComposeStackController: rebuild, restart and prune the container stack
"""

from .fetch import extract_archive, fetch_archive
from .stack import ComposeStackController, StackController
from .coordinator import UpdateCoordinator, UpdateResult

__all__ = [
    "fetch_archive",
    "extract_archive",
    "StackController",
    "ComposeStackController",
    "UpdateCoordinator",
    "UpdateResult",
]
