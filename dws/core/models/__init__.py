"""
Domain models — manifest, lockfile, plan and machine types.

All models are re-exported here for convenient access:

    from dws.core.models import ToolDefinition, Lockfile, Receipt, PlannedAction
"""

from dws.core.models.action import (
    ActionKind,
    ActionResult,
    EntryKind,
    EntryState,
    EntryStatus,
    PlannedAction,
    Stage,
)
from dws.core.models.lockfile import (
    ConfigSymlinkEntry,
    InstalledLink,
    Lockfile,
    LockMetadata,
    Receipt,
    ReceiptStatus,
)
from dws.core.models.machine import MachineDescriptor
from dws.core.models.tool import (
    ConfigSymlinkSpec,
    ExtraKind,
    InstallerKind,
    ManifestLayer,
    ResolvedState,
    ToolBinary,
    ToolDefinition,
    ToolExtra,
    VersionSpec,
)

__all__ = [
    # action.py
    "ActionKind",
    "ActionResult",
    "EntryKind",
    "EntryState",
    "EntryStatus",
    "PlannedAction",
    "Stage",
    # lockfile.py
    "ConfigSymlinkEntry",
    "InstalledLink",
    "LockMetadata",
    "Lockfile",
    "Receipt",
    "ReceiptStatus",
    # machine.py
    "MachineDescriptor",
    # tool.py
    "ConfigSymlinkSpec",
    "ExtraKind",
    "InstallerKind",
    "ManifestLayer",
    "ResolvedState",
    "ToolBinary",
    "ToolDefinition",
    "ToolExtra",
    "VersionSpec",
]
