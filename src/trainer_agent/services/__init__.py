"""
Domain services the agent's tools and data sources talk to.
"""

from .user_data import InMemoryUserDataStore, UserDataStore
from .workouts import DraftWorkout, WorkoutService

__all__ = [
    "InMemoryUserDataStore",
    "UserDataStore",
    "DraftWorkout",
    "WorkoutService",
]
