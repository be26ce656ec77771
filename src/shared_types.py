"""Shared enums and types for alphascroll."""

from enum import StrEnum


class Direction(StrEnum):
    UP = "up"
    DOWN = "down"
    MOON = "moon"
    DUMP = "dump"


class PredictionStatus(StrEnum):
    PENDING = "pending"
    CORRECT = "correct"
    INCORRECT = "incorrect"


class StorageBackend(StrEnum):
    SQLITE = "sqlite"
    MEMORY = "memory"


class MoverDirection(StrEnum):
    GAINERS = "gainers"
    LOSERS = "losers"


class AlertKind(StrEnum):
    PUMP = "pump"
    DUMP = "dump"
