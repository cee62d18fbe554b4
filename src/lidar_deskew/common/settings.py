import os
from typing import Union

import yaml
from attrdict import AttrDict


class IncludeLoader(yaml.SafeLoader):
    """ SafeLoader that understands `key: !include other.yaml`.

    Included paths are relative to the file doing the including, and may include further files.
    """

    def __init__(self, stream):
        name = getattr(stream, "name", None)
        self._root = os.path.dirname(os.path.abspath(name)) if isinstance(name, str) else os.getcwd()
        super().__init__(stream)

    def construct_include(self, node):
        path = os.path.join(self._root, self.construct_scalar(node))

        with open(path, 'r') as f:
            return yaml.load(f, IncludeLoader)


IncludeLoader.add_constructor('!include', IncludeLoader.construct_include)


## Recursively copies @p changes into @p target. Nested dicts are merged, everything else is overwritten.
def _merge_into(target: dict, changes: dict) -> None:
    for key, value in changes.items():
        if isinstance(value, dict):
            if not isinstance(target.get(key), dict):
                target[key] = {}
            _merge_into(target[key], value)
        else:
            target[key] = value


class Settings(AttrDict):
    """ Nested settings with attribute access (settings.imu.gravity).

    Attribute access hands back copies of nested sections, so changes have to go through augment.
    """

    ## Loads settings from the yaml file @p filename, then applies @p overrides on top (see augment).
    def load_from_file(filename: str, overrides: Union[dict, None] = None) -> "Settings":
        with open(filename, 'r') as f:
            settings = Settings(yaml.load(f, IncludeLoader))

        return settings.augment(overrides)

    ## Overwrites leaf values of the settings with the ones found in @p changes.
    # @param changes: A (possibly nested) dict mirroring the structure of the settings.
    #                 Keys that don't exist yet are created.
    # @returns self
    def augment(self, changes: Union[dict, None]) -> "Settings":
        if changes is not None:
            _merge_into(self, changes)
        return self

    ## @returns the settings as plain nested dicts and lists, e.g. for yaml.dump
    def to_dict(self) -> dict:
        return _plain(self)


def _plain(value):
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value
