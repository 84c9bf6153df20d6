"""
Base class for all operator commands
"""

# Standard
from typing import List, Optional
import abc
import argparse
import os

# Third Party
import yaml

# First Party
import alog

log = alog.use_channel("MAIN")


class CmdBase(abc.ABC):
    __doc__ = __doc__

    @abc.abstractmethod
    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        """Add this command's argument parser subcommand

        Args:
            subparsers (argparse._SubParsersAction): The subparser section for
                the central main parser

        Returns:
            subparser (argparse.ArgumentParser): The configured parser for this
                command
        """

    @abc.abstractmethod
    def cmd(self, args: argparse.Namespace):
        """Execute the command with the parsed arguments

        Args:
            args (argparse.Namespace): The parsed command line arguments
        """

    ## Shared Helpers ##

    @staticmethod
    def parse_resource_dir(resource_dir: Optional[str]) -> List[dict]:
        """If given, parse all yaml files found in the given directory"""
        all_resources = []
        if resource_dir is not None:
            for fname in sorted(os.listdir(resource_dir)):
                if fname.endswith(".yaml") or fname.endswith(".yml"):
                    resource_path = os.path.join(resource_dir, fname)
                    log.debug3("Reading resource file [%s]", resource_path)
                    with open(resource_path, encoding="utf-8") as handle:
                        all_resources.extend(
                            resource
                            for resource in yaml.safe_load_all(handle)
                            if resource
                        )
        return all_resources
