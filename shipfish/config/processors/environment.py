import os
import os.path
import re
from typing import Any, Dict, Union, TYPE_CHECKING

from .abstract import AbstractConfigProcessor

if TYPE_CHECKING:
    from shipfish.config import Config


class EnvironmentConfigProcessor(AbstractConfigProcessor):
    """
    Replace ``${env.VAR}`` in string values with the value of ``VAR``.  We look
    for ``VAR`` in these places, in order:

    * the ``env_file`` of the item being processed
    * the ``env_file`` given on the command line
    * the process environment, if ``import_env`` is set in our context

    The variable name may use the replacement strings from
    :py:attr:`AbstractConfigProcessor.REPLACEMENTS`; it is then upper cased and
    has its dashes turned into underscores, so ``${env.{environment}-db-host}``
    in the ``test`` environment looks for ``TEST_DB_HOST``.
    """

    ENVIRONMENT_RE = re.compile(r'\$\{env.(?P<key>[A-Za-z0-9_{}-]+)\}')

    #: What we put in place of variables we can't find, if ``ignore_missing_environment`` is set
    MISSING_VALUE: str = 'NOT-IN-ENVIRONMENT'

    def __init__(self, config: "Config", context: Dict[str, Any]):
        super().__init__(config, context)
        self.environ: Dict[str, str] = {}
        self.per_item_environ: Dict[str, Dict[str, Dict[str, str]]] = {}
        if self.context.get('import_env', False):
            self.environ.update(os.environ)
        if self.context.get('env_file', None):
            self.environ.update(self._load_env_file(self.context['env_file']))

    @property
    def ignore_missing(self) -> bool:
        return self.context.get('ignore_missing_environment', False)

    def _load_env_file(self, filename: str) -> Dict[str, str]:
        if not filename:
            return {}
        if not os.path.exists(filename):
            if not self.ignore_missing:
                raise self.ProcessingFailed('Environment file "{}" does not exist'.format(filename))
            return {}
        if not os.path.isfile(filename):
            if not self.ignore_missing:
                raise self.ProcessingFailed('Environment file "{}" is not a regular file'.format(filename))
            return {}
        try:
            with open(filename, encoding='utf-8') as f:
                raw_lines = f.readlines()
        except OSError as e:
            if not self.ignore_missing:
                raise self.ProcessingFailed('Environment file "{}" is not readable: {}'.format(filename, e)) from e
            return {}
        # Strip the comments and empty lines
        lines = [x.strip() for x in raw_lines if x.strip() and not x.strip().startswith('#')]
        environment = {}
        for line in lines:
            # split on the first "="
            parts = line.split('=', 1)
            if len(parts) == 2:
                environment[parts[0].strip()] = parts[1].strip()
        return environment

    def load_per_item_environment(self, section_name: str, item_name: str) -> Dict[str, str]:
        section = self.per_item_environ.setdefault(section_name, {})
        if item_name not in section:
            filename = self.config.get_section_item(section_name, item_name).get('env_file', None)
            section[item_name] = self._load_env_file(filename)
        return section[item_name]

    def lookup(self, envkey: str, section_name: str, item_name: str) -> str:
        item_environ = self.load_per_item_environment(section_name, item_name)
        if envkey in item_environ:
            return item_environ[envkey]
        if envkey in self.environ:
            return self.environ[envkey]
        if not self.ignore_missing:
            raise self.ProcessingFailed(
                'Config["{}"]["{}"]: Could not find value for ${{env.{}}}'.format(section_name, item_name, envkey)
            )
        return self.MISSING_VALUE

    def replace(self, obj: Any, key: Union[str, int], value: Any, section_name: str, item_name: str) -> None:
        replacers = self.get_replacements(section_name, item_name)

        def substitute(m: re.Match) -> str:
            envkey = m.group('key')
            for replace_str, replace_value in replacers.items():
                envkey = envkey.replace(replace_str, replace_value)
            return self.lookup(envkey.upper().replace('-', '_'), section_name, item_name)

        if self.ENVIRONMENT_RE.search(value):
            obj[key] = self.ENVIRONMENT_RE.sub(substitute, value)
