"""
Location simulator: synthetic position reports for every active bus.
"""

from simulator.service import LocationSimulator, TickResult, RESET_LABEL

__all__ = ["LocationSimulator", "TickResult", "RESET_LABEL"]
