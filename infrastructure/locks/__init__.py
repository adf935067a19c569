from .client import HttpLockActuator, LockActuator, SimulatedLockActuator, UnlockResult

__all__ = ["HttpLockActuator", "LockActuator", "SimulatedLockActuator", "UnlockResult"]
