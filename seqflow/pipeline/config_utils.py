"""Loads configurations from .yaml files and expands environment variables.
"""
import copy
import os

import toolz as tz
import yaml

from seqflow import utils


class CmdNotFound(Exception):
    pass

DEFAULTS = {"resources": {"default": {"attempts": 3, "timeout": None, "retry_wait": 0}},
            "parallel": {"max_workers": None, "fail_fast": False, "force_cancel": False},
            "algorithm": {"size_threshold": 110.0},
            "log_dir": "log",
            "checkpoint_dir": None}

# ## Generalized configuration

def _merge(*dicts):
    """Recursively merge configuration dictionaries, later values winning.
    """
    if all(isinstance(d, dict) for d in dicts):
        return tz.merge_with(lambda xs: _merge(*xs), *dicts)
    return dicts[-1]

def with_defaults(config=None):
    """Fill in default values for any configuration not explicitly specified.
    """
    return _merge(copy.deepcopy(DEFAULTS), config or {})

# ## Retrieval functions

def load_config(config_file):
    """Load YAML config file, replacing environmental variables.
    """
    with open(config_file) as in_handle:
        config = yaml.safe_load(in_handle) or {}
    config = _expand_paths(config)
    if 'resources' not in config:
        config['resources'] = {}
    # lowercase resource names, the preferred way to specify
    newr = {}
    for k, v in config["resources"].items():
        if k.lower() != k:
            newr[k.lower()] = v
    config["resources"].update(newr)
    return with_defaults(config)

def _expand_paths(config):
    for field, setting in config.items():
        if isinstance(config[field], dict):
            config[field] = _expand_paths(config[field])
        else:
            config[field] = expand_path(setting)
    return config

def expand_path(path):
    """ Combines os.path.expandvars with replacing ~ with $HOME.
    """
    try:
        return os.path.expandvars(path.replace("~", "$HOME"))
    except AttributeError:
        return path

def get_resources(name, config):
    """Retrieve resources for a task or program, layered over the defaults.
    """
    default = tz.get_in(["resources", "default"], config, {}) or {}
    specific = tz.get_in(["resources", name], config, {}) or {}
    if not isinstance(specific, dict):
        specific = {}
    return tz.merge(default, specific)

def get_program(name, config, default=None):
    """Retrieve the command line for a program from the configuration.

    Programs specified under `resources` with a `cmd` take precedence,
    followed by an executable of the same name on the PATH.
    """
    pconfig = tz.get_in(["resources", name], config, {}) or {}
    if isinstance(pconfig, str):
        program = pconfig
    else:
        program = pconfig.get("cmd", default or name)
    program = expand_path(program)
    found = utils.which(program)
    if not found:
        raise CmdNotFound("Could not find %s (resources: %s)" % (program, pconfig))
    return found

def get_jvm_opts(name, config, default=None):
    """Retrieve java options for a program, like picard, defaulting to modest memory.
    """
    if default is None:
        default = ["-Xms750m", "-Xmx4g"]
    return get_resources(name, config).get("jvm_opts", default)
