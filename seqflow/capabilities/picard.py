"""Run Picard tools with option pairs, using configured JVM options.
"""
from seqflow.pipeline import config_utils
from seqflow.provenance import do


def get_picard_opts(config):
    return list(config_utils.get_jvm_opts("picard", config)) + ["-XX:+UseSerialGC"]

def run(subcmd, opts, config, cancel=None, descr=None):
    """Run a Picard command with the provided option pairs.
    """
    picard = config_utils.get_program("picard", config)
    cmd = [picard] + get_picard_opts(config) + [subcmd] + \
          ["%s=%s" % (x, y) for x, y in opts] + ["VALIDATION_STRINGENCY=SILENT"]
    do.run(cmd, descr or "Picard: %s" % subcmd, cancel=cancel)
