import os

from cement import Controller
from cement.utils.version import get_version_banner

from shipfish import get_version


VERSION_BANNER = """
shipfish-%s: Deploy, roll back and inspect AWS ECS services
---
%s
""" % (get_version(), get_version_banner())


def filename_envvar(s):
    if 'SHIPFISH_CONFIG_FILE' in os.environ:
        return os.environ['SHIPFISH_CONFIG_FILE']
    return s


class Base(Controller):
    class Meta:
        label = 'base'

        # text displayed at the top of --help output
        description = 'shipfish: Deploy, roll back and inspect AWS ECS services'

        # controller level arguments. ex: 'shipfish --version'
        arguments = [
            (['-v', '--version'], {'action': 'version', 'version': VERSION_BANNER}),
            (
                ['-f', '--filename'],
                {
                    'dest': 'shipfish_filename',
                    'action': 'store',
                    'default': 'shipfish.yml',
                    'help': 'Path to the shipfish config file',
                    'type': filename_envvar
                }
            ),
            (
                ['--no-use-aws-section'],
                {
                    'action': 'store_true',
                    'dest': 'no_use_aws_section',
                    'default': False,
                    'help': 'Ignore the aws: section in shipfish.yml'
                }
            ),
            (
                ['-e', '--env_file'],
                {
                    'dest': 'env_file',
                    'action': 'store',
                    'default': None,
                    'help': 'Path to an environment file to use for ${env.VAR} replacements'
                }
            ),
            (
                ['--import-env'],
                {
                    'dest': 'import_env',
                    'action': 'store_true',
                    'default': False,
                    'help': 'Also use our process environment for ${env.VAR} replacements'
                }
            ),
            (
                ['--ignore-missing-environment'],
                {
                    'dest': 'ignore_missing_environment',
                    'action': 'store_true',
                    'default': False,
                    'help': "Don't stop processing shipfish.yml if we can't dereference an ${env.VAR}"
                }
            ),
        ]

    def _default(self):
        """Default action if no sub-command is passed."""
        self.app.args.print_help()
