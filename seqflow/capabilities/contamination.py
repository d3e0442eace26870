"""Estimate cross-sample contamination using VerifyBamID2.
"""
import os
import shutil

from seqflow import utils
from seqflow.distributed.transaction import file_transaction
from seqflow.log import logger
from seqflow.pipeline import config_utils
from seqflow.provenance import do


def estimate(bam, reference, contamination_model, sample_name, out_dir, config=None, cancel=None):
    """Run VerifyBamID2 against a reference panel, returning FREEMIX and the report.

    contamination_model -- prefix of the SVD resource files (.UD, .mu, .bed)
      describing the reference panel.
    """
    if config is None: config = {}
    out_base = os.path.join(utils.safe_makedir(os.path.join(out_dir, "qc", sample_name, "contamination")),
                            "%s-verifybamid" % sample_name)
    out_file = out_base + ".selfSM"
    if not utils.file_exists(out_file):
        verifybamid = config_utils.get_program("verifybamid2", config)
        with file_transaction(config, out_base) as tx_out_base:
            cmd = [verifybamid, "--SVDPrefix", contamination_model,
                   "--Reference", reference["fasta"], "--BamFile", bam, "--Output", tx_out_base]
            do.run(cmd, "VerifyBamID contamination checks: %s" % sample_name, cancel=cancel)
            for ext in [".selfSM", ".Ancestry"]:
                if os.path.exists(tx_out_base + ext):
                    shutil.move(tx_out_base + ext, out_base + ext)
    freemix = parse_freemix(out_file)
    logger.info("Contamination estimate for %s: %s" % (sample_name, freemix))
    return {"estimate": freemix, "report": out_file}

def parse_freemix(in_file):
    """Retrieve the FREEMIX contamination estimate from a VerifyBamID selfSM report.
    """
    with open(in_file) as in_handle:
        header = in_handle.readline().lstrip("#").rstrip("\r\n").split("\t")
        values = in_handle.readline().rstrip("\r\n").split("\t")
    return float(dict(zip(header, values))["FREEMIX"])
