"""
diagnostics.py
==============

Structured record of what the repair passes noticed and changed.

Passes never print. They report into a :class:`DiagnosticLog`, which keeps the
events for the caller and forwards each one to :mod:`logging`.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Dict, List


class Severity(enum.IntEnum):
    INFO = logging.INFO
    WARNING = logging.WARNING


@dataclass(frozen=True)
class Diagnostic:
    severity: Severity
    stage: str
    message: str

    def as_dict(self) -> Dict[str, str]:
        return {
            "severity": self.severity.name.lower(),
            "stage": self.stage,
            "message": self.message,
        }


class DiagnosticLog:
    def __init__(self, asset: str = "") -> None:
        self.asset = asset
        self.events: List[Diagnostic] = []

    def info(self, stage: str, message: str, *args: object) -> None:
        self._emit(Severity.INFO, stage, message, args)

    def warning(self, stage: str, message: str, *args: object) -> None:
        self._emit(Severity.WARNING, stage, message, args)

    def _emit(self, severity: Severity, stage: str, message: str, args: tuple) -> None:
        text = message % args if args else message
        self.events.append(Diagnostic(severity=severity, stage=stage, message=text))
        if self.asset:
            logging.log(severity, "[%s] %s: %s", self.asset, stage, text)
        else:
            logging.log(severity, "%s: %s", stage, text)

    @property
    def warnings(self) -> List[Diagnostic]:
        return [event for event in self.events if event.severity == Severity.WARNING]

    def messages(self, stage: str = "") -> List[str]:
        return [event.message for event in self.events if not stage or event.stage == stage]
