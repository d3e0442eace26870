"""
functions to access the run configuration and sample inputs in a clearer way
"""
import toolz as tz

LOOKUPS = {
    "checkpoint_dir": {"keys": ["checkpoint_dir"]},
    "max_workers": {"keys": ["parallel", "max_workers"]},
    "fail_fast": {"keys": ["parallel", "fail_fast"], "default": False},
    "force_cancel": {"keys": ["parallel", "force_cancel"], "default": False},
    "size_threshold": {"keys": ["algorithm", "size_threshold"], "default": 110.0},
    "num_cores": {"keys": ["algorithm", "num_cores"], "default": 1},
    "sample_name": {"keys": ["sample_name"]},
    "read_units": {"keys": ["read_units"], "default": [], "always_list": True},
    "work_dir": {"keys": ["work_dir"]},
    "check_contamination": {"keys": ["check_contamination"], "default": False},
    "contamination_model": {"keys": ["contamination_model"]},
    "check_fingerprint": {"keys": ["check_fingerprint"], "default": False},
    "haplotype_db": {"keys": ["haplotype_db"]},
}

def getter(keys, global_default=None, always_list=False):
    def lookup(config, default=None):
        default = global_default if not default else default
        val = tz.get_in(keys, config, default)
        if always_list:
            if not val:
                val = []
            elif not isinstance(val, (list, tuple)): val = [val]
        return val
    return lookup

def setter(keys):
    def update(config, value):
        return tz.update_in(config, keys, lambda x: value, default=value)
    return update

def is_setter(keys):
    def present(config):
        value = tz.get_in(keys, config)
        return True if value else False
    return present

"""
generate the getter and setter functions but don't override any explicitly
defined
"""
_g = globals()
for k, v in LOOKUPS.items():
    keys = v['keys']
    getter_fn = 'get_' + k
    if getter_fn not in _g:
        _g["get_" + k] = getter(keys, v.get('default', None), v.get("always_list", False))
    setter_fn = 'set_' + k
    if setter_fn not in _g:
        _g["set_" + k] = setter(keys)
    is_setter_fn = "is_set_" + k
    if is_setter_fn not in _g:
        _g["is_set_" + k] = is_setter(keys)

def get_keys(lookup):
    """
    return the keys used to look up a function in the datadict
    """
    return LOOKUPS[lookup]["keys"]
