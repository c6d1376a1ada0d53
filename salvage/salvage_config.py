"""
Declarative error-manager configuration.

A configuration document (YAML or JSON, read with `yaml.safe_load`) looks like::

    missingkey: zero
    options: [trap, flow_control]
    managers:
      defaults:
        - filters: ['map has no entry for key "(?P<key>\\w+)"']
          sources: [field]
          replace: "<{{key}} missing>"

`replace` is a Mustache template rendered with pystache against the filter
captures plus `member`, `error` and `receiver`.
"""
import collections.abc
import os
import re
from pathlib import Path
from typing import Any, Dict, List

import pystache
import yaml

from salvage.salvage_datatypes import ContextSource, ErrorAction, MissingAction, Option
from salvage.salvage_errors import ConfigError
from salvage.salvage_managers import ErrorManager

_MANAGER_KEYS = {"filters", "sources", "modes", "members", "kinds", "replace", "as_array", "keep_error"}


def load_config(source) -> Dict[str, Any]:
    """Reads a configuration from a mapping, a file path or YAML text."""
    if isinstance(source, collections.abc.Mapping):
        return dict(source)
    if isinstance(source, Path) or (isinstance(source, str) and "\n" not in source
                                    and os.path.isfile(source)):
        text = Path(source).read_text(encoding="utf-8")
    elif isinstance(source, str):
        text = source
    else:
        raise ConfigError(f"cannot load configuration from {type(source).__name__}")
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("configuration must be a mapping")
    return data


def _as_list(value) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _flag(enum_cls, name):
    if isinstance(name, enum_cls):
        return name
    try:
        return enum_cls[str(name).strip().upper()]
    except KeyError:
        raise ConfigError(f"unknown {enum_cls.__name__} value: {name}") from None


def _replacement_handler(replace, as_array: bool, keep_error: bool):
    renderer = pystache.Renderer(escape=lambda u: u)

    def handler(context):
        if as_array:
            value = context.receiver
        elif replace is None:
            value = context.receiver
        else:
            scope = dict(context.matches)
            scope.update(member=context.member_name, error=context.error_text,
                         receiver=context.receiver)
            value = renderer.render(str(replace), scope)
        if not keep_error:
            context.clear_error()
        return value, ErrorAction.RESULT_AS_ARRAY if as_array else ErrorAction.RESULT_REPLACED

    return handler


def build_manager(entry: Dict[str, Any]) -> ErrorManager:
    """Builds one ErrorManager from its configuration entry."""
    if not isinstance(entry, collections.abc.Mapping):
        raise ConfigError(f"manager entry must be a mapping, got {type(entry).__name__}")
    unknown = set(entry) - _MANAGER_KEYS
    if unknown:
        raise ConfigError(f"unknown manager keys: {', '.join(sorted(unknown))}")

    handler = _replacement_handler(entry.get("replace"), bool(entry.get("as_array")),
                                   bool(entry.get("keep_error")))
    try:
        manager = ErrorManager(handler).filters(*(str(f) for f in _as_list(entry.get("filters"))))
    except re.error as exc:
        raise ConfigError(f"invalid filter: {exc}") from exc
    manager = manager.on_sources(*(_flag(ContextSource, s) for s in _as_list(entry.get("sources"))))
    manager = manager.on_modes(*(_flag(MissingAction, m) for m in _as_list(entry.get("modes"))))
    manager = manager.on_members(*(str(m) for m in _as_list(entry.get("members"))))
    try:
        manager = manager.on_kinds(*_as_list(entry.get("kinds")))
    except ValueError as exc:
        raise ConfigError(f"unknown kind: {exc}") from exc
    return manager


def configure(template, config) -> Any:
    """Applies a configuration (see `load_config`) to `template` and returns it."""
    data = load_config(config)
    if "missingkey" in data:
        try:
            template.option(f"missingkey={data['missingkey']}")
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
    for name in _as_list(data.get("options")):
        template.option(_flag(Option, name))
    managers = data.get("managers") or {}
    if not isinstance(managers, collections.abc.Mapping):
        raise ConfigError("managers must be a mapping of group name to entries")
    for group, specs in managers.items():
        template.error_managers(str(group), *(build_manager(s) for s in _as_list(specs)))
    return template
