from copy import deepcopy
import os
from typing import Any, Dict, Final, List, Optional

import yaml

from shipfish.exceptions import ConfigProcessingFailed, NoSuchConfigSection, NoSuchConfigSectionItem
from .processors import ConfigProcessor


class Config:
    """
    This class reads our ``shipfish.yml`` file and handles the allowed
    variable substitutions in string values for the items in the sections
    named in :py:attr:`processable_sections`.

    Allowed variable substitutions:

    * ``${env.<environment var>}``:  If the environment variable
      ``<environment var>`` exists in the item's ``env_file``, the ``env_file``
      we were given, or (with ``import_env``) our process environment, replace
      this with its value.

    Args:
        filename: the path to our config file

    Keyword Args:
        raw_config: if supplied, use this as our config data instead of loading
            it from ``filename``
    """

    class NoSuchSectionError(NoSuchConfigSection):
        pass

    class NoSuchSectionItemError(NoSuchConfigSectionItem):
        pass

    #: The default name of our config file
    DEFAULT_SHIPFISH_CONFIG_FILE: Final[str] = 'shipfish.yml'

    #: The sections in our config file that will be processed by our
    #: :py:class:`shipfish.config.processors.ConfigProcessor`
    processable_sections: List[str] = [
        'targets',
    ]

    @classmethod
    def new(cls, **kwargs) -> "Config":
        """
        Load our config and run our variable substitutions on it.

        Keyword Args:
            filename: the path to our config file
            raw_config: use this instead of loading ``filename``
            interpolate: if ``False``, skip the variable substitutions
            env_file: load extra variables from this file
            import_env: if ``True``, use our process environment for substitutions
            ignore_missing_environment: if ``True``, don't fail on variables we
                can't find a value for

        Raises:
            ConfigProcessingFailed: we couldn't load or process our config
        """
        filename: Optional[str] = kwargs.pop('filename', None)
        if filename is None:
            filename = cls.DEFAULT_SHIPFISH_CONFIG_FILE
        config = cls(filename=filename, raw_config=kwargs.pop('raw_config', None))
        if kwargs.pop('interpolate', True):
            ConfigProcessor(config, kwargs).process()
        return config

    def __init__(self, filename: str, raw_config: Dict[str, Any] = None) -> None:
        self.filename: str = filename
        self.__raw: Dict[str, Any] = raw_config if raw_config else self.load_config(filename)
        self.__cooked: Dict[str, Any] = deepcopy(self.__raw)

    @property
    def raw(self) -> Dict[str, Any]:
        """
        Returns:
            The pre-interpolated version of the raw YAML.
        """
        return self.__raw

    @property
    def cooked(self) -> Dict[str, Any]:
        """
        Returns:
            The post-interpolated version of the raw YAML.
        """
        return self.__cooked

    @property
    def targets(self) -> List[Dict[str, Any]]:
        return self.cooked.get('targets', None) or []

    def load_config(self, filename: str) -> Dict[str, Any]:
        """
        Read our shipfish.yml file from disk and return it as parsed YAML.

        Args:
            filename: the path to our shipfish.yml file

        Return:
            The raw contents of the shipfish.yml file decoded to a dict
        """
        if not os.path.exists(filename):
            raise ConfigProcessingFailed("Couldn't find shipfish config file '{}'".format(filename))
        if not os.access(filename, os.R_OK):
            raise ConfigProcessingFailed(
                "shipfish config file '{}' exists but is not readable".format(filename)
            )
        with open(filename, encoding='utf-8') as f:
            try:
                data = yaml.load(f, Loader=yaml.FullLoader)
            except yaml.YAMLError as e:
                raise ConfigProcessingFailed("shipfish config file '{}' is not valid YAML: {}".format(filename, e)) from e
        if not isinstance(data, dict):
            raise ConfigProcessingFailed("shipfish config file '{}' is empty or malformed".format(filename))
        return data

    def get_target(self, target_name: str) -> Dict[str, Any]:
        """
        Get the full config for the target named ``target_name`` from our
        parsed YAML file.

        Raises:
            Config.NoSuchSectionItemError: no target named ``target_name``
                exists in our ``targets:`` section.
        """
        return self.get_section_item('targets', target_name)

    def get_section(self, section_name: str) -> List[Dict[str, Any]]:
        """
        Return the contents of a whole top level section from our shipfish.yml
        file.

        Raises:
            Config.NoSuchSectionError: no section named ``section_name`` exists
                in the config
        """
        if section_name not in self.cooked:
            raise self.NoSuchSectionError(section_name)
        return self.cooked[section_name]

    def get_section_item(self, section_name: str, item_name: str) -> Dict[str, Any]:
        """
        Get an item from a top level section with ``name`` equal to
        ``item_name`` from our INTERPOLATED shipfish.yml file.

        Item name can be either the ``name`` of the item, or the ``environment``
        of the item.

        .. note::
            If you have several items with the same ``environment``, and you ask
            for the config for the item with ``item_name`` set to that
            environment, you'll get the first one in the file.

        Raises:
            Config.NoSuchSectionError: no section named ``section_name`` exists
                in the config
            Config.NoSuchSectionItemError: no item named  ``item_name`` exists
                in the section named ``section_name``
        """
        for item in self.get_section(section_name) or []:
            if item['name'] == item_name:
                return item
            if 'environment' in item and item['environment'] == item_name:
                return item
        raise self.NoSuchSectionItemError(section_name, item_name)

    @property
    def settings(self) -> Dict[str, Any]:
        """
        The whole ``shipfish:`` section.
        """
        return self.cooked.get('shipfish', None) or {}
