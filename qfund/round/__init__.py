from __future__ import annotations

from .coordinator import RoundCoordinator, RoundState

__all__ = ["RoundCoordinator", "RoundState"]
