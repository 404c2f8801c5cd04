"""
Race Authority - reference race state server for checkpoint trackers
"""
from authority.race_state import RaceState, Racer, LapRecord
from authority.server import RaceAuthorityServer

__all__ = ["RaceState", "Racer", "LapRecord", "RaceAuthorityServer"]
