# This file is part of awsmgr. See LICENSE file for license information.
"""Read the awsmgr.toml configuration file."""
import logging
import os
from io import StringIO
from pathlib import Path
from typing import Any, Iterator, MutableMapping, Optional, Union

import toml

ENV_VAR = "AWSMGR_CONFIG"

# Searched after --config and $AWSMGR_CONFIG, user file first.
CONFIG_PATHS = [
    Path("~/.config/awsmgr.toml").expanduser(),
    Path("/etc/awsmgr.toml"),
]

ConfigFile = Union[Path, StringIO]
log = logging.getLogger(__name__)


class Config(dict):
    """Dict whose KeyError says which setting to add to awsmgr.toml."""

    def __getitem__(self, key):
        """Look up ``key``, naming the config file when it is missing."""
        if key not in self:
            raise KeyError(
                "{} must be defined in awsmgr.toml to make this "
                "call".format(key)
            )
        return super().__getitem__(key)


def _candidates(config_file: Optional[ConfigFile]) -> Iterator[ConfigFile]:
    if config_file:
        yield config_file
    from_env = os.environ.get(ENV_VAR)
    if from_env:
        yield Path(from_env)
    yield from CONFIG_PATHS


def parse_config(
    config_file: Optional[ConfigFile] = None,
) -> MutableMapping[str, Any]:
    """Load the first configuration file that exists.

    A file named by the caller must exist; the other locations are
    optional.

    Raises:
        ValueError: the named file is missing, no file was found, or the
            one found is not valid TOML
    """
    for candidate in _candidates(config_file):
        try:
            config = toml.load(candidate, _dict=Config)
        except FileNotFoundError as e:
            if candidate is config_file:
                raise ValueError(
                    "Configuration file {} does not exist".format(candidate)
                ) from e
            continue
        except toml.TomlDecodeError as e:
            raise ValueError(
                "Could not parse configuration file pointed to by "
                "{}".format(candidate)
            ) from e
        log.debug("Loaded configuration from %s", candidate)
        return config
    raise ValueError(
        "No configuration file found! Create ~/.config/awsmgr.toml or "
        "/etc/awsmgr.toml, or point {} at one".format(ENV_VAR)
    )


def load_config(
    config_file: Optional[ConfigFile] = None,
) -> MutableMapping[str, Any]:
    """Load configuration, falling back to an empty one.

    Every setting has a default or is prompted for, so having no file is
    not an error for interactive use. A file that does not parse, or an
    explicit ``config_file`` that does not exist, still raises.
    """
    try:
        return parse_config(config_file)
    except ValueError as e:
        if config_file or isinstance(e.__cause__, toml.TomlDecodeError):
            raise
        log.debug("Running without a configuration file: %s", e)
        return Config()
