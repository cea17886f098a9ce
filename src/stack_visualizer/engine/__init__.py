from .reconciler import (
    EventKind,
    InstructionClass,
    ReconciliationEngine,
    SlotUpdate,
)

__all__ = [
    "EventKind",
    "InstructionClass",
    "ReconciliationEngine",
    "SlotUpdate",
]
