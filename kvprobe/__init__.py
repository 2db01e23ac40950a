"""kvprobe: a correctness probe for Redis command semantics.

Modules:
- config: environment-driven settings (scales, TTLs, target)
- keys: tagged key batches and the shuffle fingerprint
- ttl: conditional expiry in script and pipeline form
- engine: the ordered scenario sequence
- storage: store protocols and the redis-py adapter
- cli: command-line entry point
"""

from kvprobe.engine import Scenario, ScenarioEngine, ScenarioResult
from kvprobe.exceptions import ContractViolation, ProbeError, SetupError

__all__ = [
    "ContractViolation",
    "ProbeError",
    "Scenario",
    "ScenarioEngine",
    "ScenarioResult",
    "SetupError",
]
