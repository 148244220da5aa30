from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet


@dataclass(frozen=True)
class Transition:
    """
    A planned status change, ready to be applied as a conditional write.

    ``allowed_from`` is the set of statuses the row must still be in when the
    write lands; ``expect`` holds any extra column values the guard relied on
    (for example ``checked_in=False``). ``values()`` is ``changes`` plus the
    new ``status``.
    """
    action: str
    target: Enum
    allowed_from: FrozenSet[Enum]
    changes: Dict[str, Any] = field(default_factory=dict)
    expect: Dict[str, Any] = field(default_factory=dict)

    def values(self) -> Dict[str, Any]:
        return {"status": self.target, **self.changes}
