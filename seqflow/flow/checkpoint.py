"""Persist resolved node outputs so interrupted runs can resume.

Each succeeded node writes a small YAML file keyed by run identifier and node
identifier. Re-running with the same run identifier restores those nodes
without invoking their capabilities again.
"""
import os
import re

import yaml

from seqflow import utils
from seqflow.flow.errors import CheckpointError
from seqflow.flow.values import ABSENT
from seqflow.log import logger

ABSENT_TAG = "!absent"

class _Dumper(yaml.SafeDumper):
    pass

class _Loader(yaml.SafeLoader):
    pass

_Dumper.add_representer(type(ABSENT), lambda dumper, data: dumper.represent_scalar(ABSENT_TAG, ""))
_Loader.add_constructor(ABSENT_TAG, lambda loader, node: ABSENT)

def _plain(value):
    if isinstance(value, dict):
        return dict((k, _plain(v)) for k, v in value.items())
    elif isinstance(value, (list, tuple)):
        return [_plain(x) for x in value]
    return value

class CheckpointStore(object):
    def __init__(self, base_dir):
        self.base_dir = os.path.abspath(base_dir)

    def _path(self, run_id, node_id):
        safe_id = re.sub(r"[^A-Za-z0-9_.-]", "_", node_id)
        return os.path.join(self.base_dir, run_id, "%s.yaml" % safe_id)

    def save(self, run_id, node_id, outputs):
        """Write outputs for a node, moving into place only once fully written.

        Raises CheckpointError if the checkpoint directory is not writable.
        """
        out_file = self._path(run_id, node_id)
        tx_file = out_file + ".tmp"
        try:
            utils.safe_makedir(os.path.dirname(out_file))
            with open(tx_file, "w") as out_handle:
                yaml.dump({"node": node_id, "outputs": _plain(outputs)}, out_handle,
                          Dumper=_Dumper, default_flow_style=False, allow_unicode=False)
            os.replace(tx_file, out_file)
        except yaml.representer.RepresenterError as msg:
            logger.warning("Not checkpointing %s, outputs are not serializable: %s" % (node_id, msg))
            utils.remove_safe(tx_file)
            return None
        except (IOError, OSError) as msg:
            utils.remove_safe(tx_file)
            raise CheckpointError("Unable to write checkpoint %s: %s" % (out_file, msg), node_id)
        return out_file

    def load(self, run_id, node_id):
        """Retrieve checkpointed outputs for a node, or None if it has not finished.
        """
        in_file = self._path(run_id, node_id)
        if not utils.file_exists(in_file):
            return None
        try:
            with open(in_file) as in_handle:
                data = yaml.load(in_handle, Loader=_Loader)
        except (IOError, OSError, yaml.YAMLError) as msg:
            raise CheckpointError("Unable to read checkpoint %s: %s" % (in_file, msg), node_id)
        if not isinstance(data, dict) or "outputs" not in data:
            raise CheckpointError("Checkpoint %s has no outputs" % in_file, node_id)
        return data["outputs"]

    def clear(self, run_id):
        utils.remove_safe(os.path.join(self.base_dir, run_id))
