import os
from typing import Any, Dict, Optional

from cement import App, init_defaults
from cement.core.exc import CaughtSignal

from .config import Config
from .controllers import Base, Deploy
from .core.aws import build_boto3_session
from .exceptions import ShipfishAppError, ShipfishError

# configuration defaults
CONFIG = init_defaults('shipfish')
META = init_defaults('log.colorlog')
META['log.colorlog']['log_level_argument'] = ['-l', '--level']


def post_arg_parse_build_boto3_session(app: "ShipfishApp") -> None:
    """
    After parsing arguments but before doing any other actions, build a properly
    configured ``boto3.session.Session`` object for us to use in our AWS work.

    Args:
        app: our ShipfishApp object
    """
    app.log.debug('building boto3 session')
    try:
        build_boto3_session(
            app.pargs.shipfish_filename,
            use_aws_section=not app.pargs.no_use_aws_section
        )
    except ShipfishError as e:
        raise ShipfishAppError(str(e)) from e

# ------------------
# The cement app
# ------------------


class ShipfishApp(App):
    """shipfish primary application."""

    class Meta:
        label = 'shipfish'

        config_defaults = CONFIG
        meta_defaults = META

        # call sys.exit() on close
        exit_on_close = True

        # load additional framework extensions
        extensions = [
            'yaml',
            'colorlog',
            'print',
        ]

        # configuration handler
        config_handler = 'yaml'

        # configuration file suffix
        config_file_suffix = '.yml'

        # handlers
        log_handler = 'colorlog'

        # register handlers
        handlers = [
            Base,
            Deploy,
        ]

        # define hooks
        define_hooks = [
            'pre_deploy',   # hook(app: App, target: Target, operation: str)
            'post_deploy',  # hook(app: App, target: Target, operation: str, success: bool = True, reason: str = None)
        ]

        # register hooks
        hooks = [
            ('post_argument_parsing', post_arg_parse_build_boto3_session)
        ]

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._shipfish_config: Optional[Config] = None

    @property
    def shipfish_config(self) -> Config:
        """
        Lazy load the ``shipfish.yml`` file.

        Returns:
            The fully interpolated Config object.
        """
        if not self._shipfish_config:
            ignore_missing_environment = False
            if (
                self.pargs.ignore_missing_environment or
                os.environ.get('SHIPFISH_IGNORE_MISSING_ENVIRONMENT', 'false').lower() == 'true'
            ):
                ignore_missing_environment = True
            config_kwargs: Dict[str, Any] = {
                'filename': self.pargs.shipfish_filename,
                'env_file': self.pargs.env_file,
                'import_env': self.pargs.import_env,
                'ignore_missing_environment': ignore_missing_environment
            }
            self._shipfish_config = Config.new(**config_kwargs)
        return self._shipfish_config


# ==========================================
# entrypoint
# ==========================================


def main():
    with ShipfishApp() as app:
        try:
            app.run()

        except AssertionError as e:
            print('AssertionError > %s' % e.args[0])
            app.exit_code = 1

            if app.debug is True:
                import traceback
                traceback.print_exc()

        except ShipfishAppError as e:
            print('ShipfishAppError > %s' % e.args[0])
            app.exit_code = 1

            if app.debug is True:
                import traceback
                traceback.print_exc()

        except CaughtSignal as e:
            # Default Cement signals are SIGINT and SIGTERM, exit 0 (non-error)
            print('\n%s' % e)
            app.exit_code = 0


if __name__ == '__main__':
    main()
