from copy import deepcopy
import json
from typing import Any, Dict

from jsondiff import diff


class Model:
    """
    A thin wrapper around the dict AWS gives us back when we describe one
    object.  Models are snapshots: they never go back to AWS on their own, so
    anything that needs fresh data has to ask the gateway again.
    """

    def __init__(self, data: Dict[str, Any]) -> None:
        self.data = data

    @property
    def pk(self) -> str:
        raise NotImplementedError

    @property
    def name(self) -> str:
        raise NotImplementedError

    @property
    def arn(self) -> str:
        raise NotImplementedError

    def render(self) -> Dict[str, Any]:
        return deepcopy(self.data)

    def render_for_diff(self) -> Dict[str, Any]:
        return self.render()

    def __eq__(self, other) -> bool:
        if self.__class__ != other.__class__:
            return False
        return self.render_for_diff() == other.render_for_diff()

    def diff(self, other: "Model") -> Dict[str, Any]:
        """
        Return the differences needed to get from ``other`` to us, in jsondiff's
        explicit syntax.
        """
        if self.__class__ != other.__class__:
            raise ValueError(f'{str(other)} is not a {self.__class__.__name__}')
        return json.loads(diff(other.render_for_diff(), self.render_for_diff(), syntax='explicit', dump=True))

    def __str__(self) -> str:
        return '{}(pk="{}")'.format(self.__class__.__name__, self.pk)
