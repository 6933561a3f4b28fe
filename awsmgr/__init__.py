# This file is part of awsmgr. See LICENSE file for license information.
"""Main awsmgr module __init__."""

import logging

from awsmgr.convergence import (
    ConvergenceOutcome,
    ConvergenceRequest,
    OutcomeState,
    ResourceKind,
    RiskClass,
    TransientErrorPolicy,
    await_convergence,
    poll,
)
from awsmgr.fanout import scan_regions
from awsmgr.session import Connection, ConnectionConfig

__all__ = [
    "Connection",
    "ConnectionConfig",
    "ConvergenceOutcome",
    "ConvergenceRequest",
    "OutcomeState",
    "ResourceKind",
    "RiskClass",
    "TransientErrorPolicy",
    "await_convergence",
    "poll",
    "scan_regions",
]

logging.getLogger(__name__).addHandler(logging.NullHandler())
