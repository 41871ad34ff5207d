from .state_persistence import StatePersistence
from .state_manager import BranchStateStore

__all__ = ["StatePersistence", "BranchStateStore"]
