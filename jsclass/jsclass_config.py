"""
Configuration for the test runner, read from YAML.
"""
import os
import logging
import collections.abc
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, List, Optional, Union

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "JSCLASS_CONFIG"

# Spellings used by the JavaScript runner.
_ALIASES = {
    "asyncTimeout": "async_timeout",
    "showStack": "show_stack",
    "filter": "filters",
}


@dataclass
class RunnerConfig:
    """Runner settings; unknown keys in a source are ignored."""
    async_timeout: float = 10
    show_stack: bool = True
    filters: List[str] = field(default_factory=list)


def _read_source(source: Union[str, Path, collections.abc.Mapping]) -> Any:
    if isinstance(source, collections.abc.Mapping):
        return source
    if isinstance(source, Path) or (isinstance(source, str) and "\n" not in source and Path(source).is_file()):
        return yaml.safe_load(Path(source).read_text(encoding="utf-8"))
    return yaml.safe_load(source)


def load_config(source: Optional[Union[str, Path, collections.abc.Mapping]] = None,
                defaults: Optional[collections.abc.Mapping] = None) -> RunnerConfig:
    """Builds a RunnerConfig from a mapping, a YAML file path or YAML text.

    With no source, the file named by JSCLASS_CONFIG is used when set.
    `defaults` fills in keys the source leaves out.
    """
    if source is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        source = Path(env_path) if env_path else {}
    data = _read_source(source)
    if data is None:
        data = {}
    if not isinstance(data, collections.abc.Mapping):
        raise ValueError(f"Runner config must be a mapping, not {type(data).__name__}")

    known = {f.name for f in fields(RunnerConfig)}
    values = {}
    for key, value in list((defaults or {}).items()) + list(data.items()):
        name = _ALIASES.get(key, key)
        if name not in known:
            logger.debug("ignoring unknown runner config key %r", key)
            continue
        values[name] = value

    if "filters" in values:
        filters = values["filters"]
        values["filters"] = [str(f) for f in ([filters] if isinstance(filters, str) else (filters or []))]
    if "async_timeout" in values:
        try:
            values["async_timeout"] = float(values["async_timeout"])
        except (TypeError, ValueError):
            raise ValueError(f"async_timeout must be a number, got {values['async_timeout']!r}")
    if "show_stack" in values:
        values["show_stack"] = bool(values["show_stack"])
    return RunnerConfig(**values)
