"""chatline sync package.

Holds the session/message synchronization core: identity resolution on launch
(`identity`), live message log reconciliation (`reconciler`) and the session
coordinator that front-ends talk to (`controller`).
"""

from __future__ import annotations

__all__: list[str] = [
    "controller",
    "identity",
    "reconciler",
]
