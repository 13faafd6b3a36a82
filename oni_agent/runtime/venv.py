from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping


def build_virtual_env(oni_path: str | Path, base_env: Mapping[str, str] | None = None) -> dict[str, str]:
    """Emulate what `bin/activate` does for non-interactive use of manage.py.

    activate only matters here for three things: VIRTUAL_ENV is set, its bin
    dir goes first on PATH, and PYTHONHOME is unset. Prompt changes and the
    deactivate bookkeeping are irrelevant.
    """
    env = dict(os.environ if base_env is None else base_env)
    env_path = os.path.join(str(oni_path), "ENV")
    bin_path = os.path.join(env_path, "bin")

    path_parts = [p for p in env.get("PATH", "").split(os.pathsep) if p]
    env["VIRTUAL_ENV"] = env_path
    env["PATH"] = os.pathsep.join([bin_path, *path_parts])
    env.pop("PYTHONHOME", None)
    return env


@dataclass(frozen=True)
class ONIEnvironment:
    """Activated environment for running ONI management commands."""

    oni_path: str
    env: dict[str, str] = field(default_factory=dict)

    @classmethod
    def activate(cls, oni_path: str | Path, base_env: Mapping[str, str] | None = None) -> "ONIEnvironment":
        p = os.path.abspath(str(oni_path))
        return cls(oni_path=p, env=build_virtual_env(p, base_env))

    @property
    def binpath(self) -> str:
        return os.path.join(self.oni_path, "manage.py")

    def command(self, args: list[str]) -> list[str]:
        return [self.binpath, *args]

    def popen(self, args: list[str]) -> subprocess.Popen[bytes]:
        return subprocess.Popen(
            self.command(args),
            env=dict(self.env),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
