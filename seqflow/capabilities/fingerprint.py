"""Cross-check fingerprints of read units to detect sample swaps.
"""
import os

from seqflow import utils
from seqflow.capabilities import picard
from seqflow.distributed.transaction import file_transaction


def crosscheck(bams, haplotype_db, sample_name, out_dir, config=None, cancel=None):
    """Run Picard CrosscheckFingerprints over the read group alignments of a sample.

    All read groups are expected to come from the same individual; mismatches
    are reported in the output metrics.
    """
    if config is None: config = {}
    out_file = os.path.join(utils.safe_makedir(os.path.join(out_dir, "qc", sample_name, "fingerprint")),
                            "%s.crosscheck_metrics" % sample_name)
    if not utils.file_exists(out_file):
        with file_transaction(config, out_file) as tx_out_file:
            opts = [("INPUT", x) for x in bams]
            opts += [("HAPLOTYPE_MAP", haplotype_db),
                     ("OUTPUT", tx_out_file),
                     ("CROSSCHECK_BY", "READGROUP"),
                     ("EXIT_CODE_WHEN_MISMATCH", 0)]
            picard.run("CrosscheckFingerprints", opts, config, cancel=cancel,
                       descr="Fingerprint crosscheck: %s" % sample_name)
    return {"report": out_file}
