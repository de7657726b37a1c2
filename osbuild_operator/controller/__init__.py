"""Controller runtime for reconciling objects in the store.

The `Manager` wiring the operator controllers together lives in
`osbuild_operator.controller.manager`.
"""

from .controller import Controller, ControllerConfig, Reconciler, Result
from .queue import WorkQueue

__all__ = [
    "Controller",
    "ControllerConfig",
    "Reconciler",
    "Result",
    "WorkQueue",
]
