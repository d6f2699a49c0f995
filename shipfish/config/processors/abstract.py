from typing import Any, Dict, List, Union, TYPE_CHECKING

from shipfish.exceptions import (
    ConfigProcessingFailed,
    SkipConfigProcessing as BaseSkipConfigProcessing
)

if TYPE_CHECKING:
    from shipfish.config import Config


class AbstractConfigProcessor:
    """
    A base class for processors for our ``shipfish.yml`` file.  These
    processors rewrite string values in the items of our processable sections
    before the rest of ``shipfish`` consumes them.

    Args:
        config: the :py:class:`shipfish.config.Config` object we're working
            with
        context: a dict of additional data that we might use when processing the
            config
    """

    class SkipConfigProcessing(BaseSkipConfigProcessing):
        pass

    class ProcessingFailed(ConfigProcessingFailed):
        pass

    #: The replacement strings we support inside variable names
    REPLACEMENTS: List[str] = [
        '{name}',
        '{environment}',
        '{cluster-name}'
    ]

    def __init__(self, config: "Config", context: Dict[str, Any]):
        #: The :py:class:`shipfish.config.Config` we are processing
        self.config = config
        #: Any additional context our caller wished to give us for our processing
        self.context = context
        #: Values for each of :py:attr:`REPLACEMENTS`, by section name then item name
        self.lookups: Dict[str, Dict[str, Dict[str, str]]] = {}
        self.extract_replacements()

    def extract_replacements(self) -> None:
        """
        Populate :py:attr:`lookups`.
        """
        for section_name in self.config.processable_sections:
            self.lookups[section_name] = {}
            for item in self.config.cooked.get(section_name, None) or []:
                replacements = {
                    '{name}': item['name'],
                    '{environment}': item.get('environment', 'prod'),
                }
                if 'cluster' in item:
                    replacements['{cluster-name}'] = item['cluster']
                self.lookups[section_name][item['name']] = replacements

    def get_replacements(self, section_name: str, item_name: str) -> Dict[str, str]:
        """
        Return all known replacements for item ``item_name`` in section
        ``section_name``.  For this ``targets:`` entry::

            targets:
              - name: web-test
                environment: test
                cluster: web-cluster

        ``processor.get_replacements('targets', 'web-test')`` returns::

            {
                '{name}': 'web-test',
                '{environment}': 'test',
                '{cluster-name}': 'web-cluster',
            }

        Raises:
            KeyError: we have no replacements for either ``section_name`` or ``item_name``
        """
        return self.lookups[section_name][item_name]

    def replace(
        self,
        obj: Union[List, Dict],
        key: Union[str, int],
        value: str,
        section_name: str,
        item_name: str
    ) -> None:
        """
        Perform string replacements on ``value``, which is ``obj[key]``, and
        store the result back in ``obj[key]``.
        """
        raise NotImplementedError

    def __process(
        self,
        obj: Any,
        key: Union[str, int],
        value: Any,
        section_name: str,
        item_name: str
    ) -> None:
        if isinstance(value, dict):
            self.__process_dict(value, section_name, item_name)
        elif isinstance(value, (list, tuple)):
            self.__process_list(value, section_name, item_name)
        elif isinstance(value, str):
            self.replace(obj, key, value, section_name, item_name)

    def __process_list(self, obj: List[Any], section_name: str, item_name: str) -> None:
        for i, value in enumerate(obj):
            self.__process(obj, i, value, section_name, item_name)

    def __process_dict(self, obj: Dict[str, Any], section_name: str, item_name: str) -> None:
        for key, value in list(obj.items()):
            self.__process(obj, key, value, section_name, item_name)

    def process(self) -> None:
        """
        Run our replacements on every item in every section listed in
        :py:attr:`shipfish.config.Config.processable_sections`, modifying
        :py:attr:`shipfish.config.Config.cooked` in place.

        Raises:
            AbstractConfigProcessor.ProcessingFailed: something went wrong when
                we tried to run
        """
        for section_name in self.config.processable_sections:
            for item in self.config.cooked.get(section_name, None) or []:
                self.__process_dict(item, section_name, item['name'])
