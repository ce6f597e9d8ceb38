"""Twin CLI commands package.

Each command module exports its main command function.
"""

from twin.commands.build import cmd_build
from twin.commands.init import cmd_init
from twin.commands.plan import cmd_plan
from twin.commands.scout import cmd_scout
from twin.commands.steer import cmd_steer

__all__: list = [
    "cmd_build",
    "cmd_init",
    "cmd_plan",
    "cmd_scout",
    "cmd_steer",
]
