"""Tyro CLI application entrypoint."""

from __future__ import annotations

from typing import Annotated

import tyro

from pipetrace.cli import (
    commands_check,
    commands_inspect,
    commands_replay,
    commands_simulate,
)


TopLevelCommand = Annotated[
    commands_simulate.SimulateCommand,
    tyro.conf.subcommand(name="simulate"),
] | Annotated[
    commands_replay.ReplayCommand,
    tyro.conf.subcommand(name="replay"),
] | Annotated[
    commands_check.CheckCommand,
    tyro.conf.subcommand(name="check"),
] | Annotated[
    commands_inspect.InspectCommand,
    tyro.conf.subcommand(name="inspect"),
]


def dispatch(command: TopLevelCommand) -> None:
    """Dispatch a parsed top-level command object."""

    if isinstance(command, commands_simulate.SimulateCommand):
        commands_simulate.execute(command)
        return
    if isinstance(command, commands_replay.ReplayCommand):
        commands_replay.execute(command)
        return
    if isinstance(command, commands_check.CheckCommand):
        commands_check.execute(command)
        return
    if isinstance(command, commands_inspect.InspectCommand):
        commands_inspect.execute(command)
        return
    raise TypeError(f"Unsupported command type: {type(command).__name__}")


def main(argv: list[str] | None = None) -> None:
    command = tyro.cli(TopLevelCommand, args=argv)
    dispatch(command)
