#!/usr/bin/env python3
"""
Shared fixtures for the runtime test suite
"""

import os
import sys
from typing import Any, Dict, List, Optional

import pytest
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))


class SleepRecorder:
    """Stand-in for asyncio.sleep that returns at once and records delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeModule:
    """
    Lifecycle module double.

    ``failures`` maps a phase name to how many calls should fail before
    succeeding; -1 fails forever.
    """

    def __init__(
        self,
        name: str,
        calls: Optional[List[str]] = None,
        failures: Optional[Dict[str, int]] = None,
    ) -> None:
        self.name = name
        self.calls = calls if calls is not None else []
        self.failures = dict(failures or {})
        self.errors: List[str] = []

    def _run(self, phase: str) -> str:
        self.calls.append(f"{phase}:{self.name}")
        remaining = self.failures.get(phase, 0)
        if remaining != 0:
            if remaining > 0:
                self.failures[phase] = remaining - 1
            raise RuntimeError(f"{self.name} {phase} boom")
        return phase

    def init(self) -> Any:
        return self._run("init")

    def start(self) -> Any:
        return self._run("start")

    def stop(self) -> Any:
        return self._run("stop")

    def on_error(self, message: str) -> None:
        self.errors.append(message)


@pytest.fixture
def fast_sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def calls() -> List[str]:
    return []


@pytest.fixture
def make_module(calls):
    """Build FakeModule instances sharing one call log."""

    def _make(name: str, **failures: int) -> FakeModule:
        return FakeModule(name, calls=calls, failures=failures)

    return _make


@pytest.fixture
def errors() -> List[str]:
    """Collects messages sent to an error sink."""
    return []
