#!/usr/bin/env python
"""
The main module provides the executable entrypoint for the NamespaceLabel
operator
"""

# Standard
from typing import Dict, List, Tuple
import argparse

# First Party
import aconfig
import alog

# Local
from . import config
from .cmd import CmdBase, RunOperatorCmd, RunWebhookCmd
from .config import library_config
from .log_format import NslabelJsonFormatter

## Constants ###################################################################

log = alog.use_channel("MAIN")

## Helpers #####################################################################


def add_library_config_args(parser, config_obj=None, path=None):
    """Automatically add args for all elements of the library config"""
    path = path or []
    setters = {}
    config_obj = config_obj or library_config
    for key, val in config_obj.items():
        sub_path = path + [key]

        # Nested sections recurse with the dotted path
        if isinstance(val, aconfig.AttributeAccessDict):
            setters.update(
                add_library_config_args(parser, config_obj=val, path=sub_path)
            )
            continue

        arg_name = ".".join(sub_path)
        dest_name = "_".join(sub_path)
        kwargs = {
            "default": val,
            "dest": dest_name,
            "help": f"Library config override for {arg_name} (see nslabel.config)",
        }
        if isinstance(val, list):
            kwargs["nargs"] = "*"
        elif isinstance(val, bool):
            kwargs["action"] = "store_true"
        elif val is not None:
            kwargs["type"] = type(val)

        if (
            f"--{arg_name}"
            not in parser._option_string_actions  # pylint: disable=protected-access
        ):
            parser.add_argument(f"--{arg_name}", **kwargs)
            setters[dest_name] = sub_path
    return setters


def update_library_config(args: argparse.Namespace, setters: Dict[str, List[str]]):
    """Update the library config values based on the parsed arguments"""
    for dest_name, config_path in setters.items():
        config_obj = library_config
        while len(config_path) > 1:
            config_obj = config_obj[config_path[0]]
            config_path = config_path[1:]
        config_obj[config_path[0]] = getattr(args, dest_name)


def add_command(
    subparsers: argparse._SubParsersAction,
    cmd: CmdBase,
) -> Tuple[argparse.ArgumentParser, Dict[str, List[str]]]:
    """Add the subparser and set up the default fun call"""
    parser = cmd.add_subparser(subparsers)
    parser.set_defaults(func=cmd.cmd)
    library_args = parser.add_argument_group("Library Configuration")
    library_config_setters = add_library_config_args(library_args)
    return parser, library_config_setters


def parse_args(argv=None) -> Tuple[argparse.Namespace, Dict[str, List[str]]]:
    """Parse the command line. Without a known command, the args are parsed
    for the run command.
    """
    parser = argparse.ArgumentParser(description=__doc__)

    subparsers = parser.add_subparsers(help="Available commands", dest="command")
    run_operator_parser, run_setters = add_command(subparsers, RunOperatorCmd())
    _, webhook_setters = add_command(subparsers, RunWebhookCmd())

    # Use a preliminary parser to check for the presence of a command and fall
    # back to the default command if not found
    check_parser = argparse.ArgumentParser(add_help=False)
    check_parser.add_argument("command", nargs="?")
    check_args, _ = check_parser.parse_known_args(argv)
    if check_args.command not in subparsers.choices:
        return run_operator_parser.parse_args(argv), run_setters

    args = parser.parse_args(argv)
    return args, webhook_setters if args.command == "webhook" else run_setters


## Main ########################################################################


def main(argv=None):
    """The main module provides the executable entrypoint for the operator"""
    args, library_config_setters = parse_args(argv)

    # Provide overrides to the library configs
    update_library_config(args, library_config_setters)

    # Reconfigure logging
    alog.configure(
        default_level=config.log_level,
        filters=config.log_filters,
        formatter=NslabelJsonFormatter() if config.log_json else "pretty",
        thread_id=config.log_thread_id,
    )

    # Run the command's function
    args.func(args)


if __name__ == "__main__":  # pragma: no cover
    main()
