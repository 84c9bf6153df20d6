"""
This is the main entrypoint command for running the operator
"""
# Standard
from typing import List, Optional
import argparse
import os
import signal

# Third Party
import yaml

# First Party
import alog

# Local
from .. import config, watch_manager
from ..constants import DEFAULT_NAMESPACE
from ..deploy_manager import DryRunDeployManager
from .base import CmdBase

log = alog.use_channel("MAIN")


class RunOperatorCmd(CmdBase):
    __doc__ = __doc__

    ## Interface ##

    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        parser = subparsers.add_parser("run", help=__doc__)
        runtime_args = parser.add_argument_group("Runtime Configuration")
        runtime_args.add_argument(
            "--cr",
            "-c",
            default=None,
            help="(dry run) A NamespaceLabel manifest yaml to apply directly",
        )
        runtime_args.add_argument(
            "--resource_dir",
            "-r",
            default=None,
            help="(dry run) Path to a directory of yaml files that should exist in the cluster",
        )
        return parser

    def cmd(self, args: argparse.Namespace):
        # Validate args
        assert args.cr is None or (
            config.dry_run and os.path.isfile(args.cr)
        ), "Can only specify --cr with dry run and it must point to a valid file"
        assert args.resource_dir is None or (
            config.dry_run and os.path.isdir(args.resource_dir)
        ), "Can only specify --resource_dir with dry run and it must point to a valid directory"

        # Parse pre-populated resources if needed
        resources = self.parse_resource_dir(args.resource_dir)

        # Create the watch manager
        deploy_manager = self._setup_watches(resources)

        # Register the signal handler to stop the watches
        def do_stop(*_, **__):  # pragma: no cover
            watch_manager.stop_all()

        signal.signal(signal.SIGINT, do_stop)
        signal.signal(signal.SIGTERM, do_stop)

        # Run the watch manager
        log.info("Starting Watches")
        watch_manager.start_all()

        # If given, apply the NamespaceLabel directly
        if args.cr:
            log.info("Applying NamespaceLabel [%s]", args.cr)
            with open(args.cr, encoding="utf-8") as handle:
                cr_manifest = yaml.safe_load(handle)
                cr_manifest.setdefault("metadata", {}).setdefault(
                    "namespace", DEFAULT_NAMESPACE
                )
                log.debug3(cr_manifest)
                deploy_manager.deploy([cr_manifest])

        # All done!
        log.info("SHUTTING DOWN")

    ## Impl ##

    @staticmethod
    def _setup_watches(resources: List[dict]) -> Optional[DryRunDeployManager]:
        """Set up the NamespaceLabel watch. If in dry run mode, the
        DryRunDeployManager will be returned.
        """
        if config.dry_run:
            log.info("Running DRY RUN")
            deploy_manager = DryRunDeployManager(resources=resources)
            watch_manager.DryRunWatchManager(deploy_manager=deploy_manager)
            return deploy_manager

        log.info("Running Python Operator")  # pragma: no cover
        watch_manager.PythonWatchManager()  # pragma: no cover
        return None  # pragma: no cover
