"""Collect alignment quality metrics with Picard and samtools.
"""
import glob
import os

from seqflow import utils
from seqflow.capabilities import picard
from seqflow.distributed.transaction import file_transaction
from seqflow.pipeline import config_utils
from seqflow.provenance import do

PICARD_PROGRAMS = ["CollectAlignmentSummaryMetrics", "CollectInsertSizeMetrics",
                   "QualityScoreDistribution", "MeanQualityByCycle", "CollectGcBiasMetrics"]

def collect_metrics(bam, reference, sample_name, out_dir, config=None, cancel=None):
    """Run quality metrics on an alignment, returning the list of report files.
    """
    if config is None: config = {}
    work_dir = utils.safe_makedir(os.path.join(out_dir, "qc", sample_name))
    reports = _picard_metrics(bam, reference["fasta"], os.path.join(work_dir, sample_name), config, cancel)
    reports.append(_samtools_stats(bam, os.path.join(work_dir, "%s.samtools_stats.txt" % sample_name),
                                   config, cancel))
    return {"reports": reports}

def _picard_metrics(bam, ref_file, out_base, config, cancel):
    done_file = "%s.alignment_summary_metrics" % out_base
    if not utils.file_exists(done_file):
        opts = [("INPUT", bam), ("OUTPUT", out_base), ("REFERENCE_SEQUENCE", ref_file),
                ("ASSUME_SORTED", "true")]
        opts += [("PROGRAM", x) for x in PICARD_PROGRAMS]
        picard.run("CollectMultipleMetrics", opts, config, cancel=cancel,
                   descr="Picard CollectMultipleMetrics: %s" % os.path.basename(out_base))
    return sorted(x for x in glob.glob("%s.*" % out_base) if not x.endswith(".pdf"))

def _samtools_stats(bam, out_file, config, cancel):
    if not utils.file_exists(out_file):
        samtools = config_utils.get_program("samtools", config)
        with file_transaction(config, out_file) as tx_out_file:
            cmd = "{samtools} stats {bam} > {tx_out_file}"
            do.run(cmd.format(**locals()), "samtools stats: %s" % os.path.basename(bam),
                   checks=[do.file_nonempty(tx_out_file)], cancel=cancel)
    return out_file
