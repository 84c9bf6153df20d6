"""
Serve the NamespaceLabel validating admission webhook
"""
# Standard
import argparse
import os

# First Party
import alog

# Local
from .. import config
from ..admission import NamespaceLabelValidator
from ..deploy_manager import DryRunDeployManager, OpenshiftDeployManager
from ..webhook_server import run_webhook_server
from .base import CmdBase

log = alog.use_channel("MAIN")


class RunWebhookCmd(CmdBase):
    __doc__ = __doc__

    ## Interface ##

    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        parser = subparsers.add_parser("webhook", help=__doc__)
        runtime_args = parser.add_argument_group("Webhook Configuration")
        runtime_args.add_argument(
            "--resource_dir",
            "-r",
            default=None,
            help="(dry run) Path to a directory of yaml files that should exist in the cluster",
        )
        return parser

    def cmd(self, args: argparse.Namespace):
        assert args.resource_dir is None or (
            config.dry_run and os.path.isdir(args.resource_dir)
        ), "Can only specify --resource_dir with dry run and it must point to a valid directory"

        if config.dry_run:
            log.info("Validating against a DRY RUN cluster")
            deploy_manager = DryRunDeployManager(
                resources=self.parse_resource_dir(args.resource_dir)
            )
        else:
            deploy_manager = OpenshiftDeployManager()

        run_webhook_server(NamespaceLabelValidator(deploy_manager))
