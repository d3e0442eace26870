"""Align read units to a reference with bwa mem, marking duplicates.

Each read unit (a lane or flowcell chunk of one sample) is aligned on its
own, producing a coordinate sorted, duplicate marked and indexed BAM. The
per-unit BAMs are then merged into the single per-sample alignment.
"""
import os

from seqflow import utils
from seqflow.capabilities import picard
from seqflow.distributed.transaction import file_transaction, tx_tmpdir
from seqflow.log import logger
from seqflow.pipeline import config_utils
from seqflow.pipeline import datadict as dd
from seqflow.provenance import do


def align_unit(read_unit, reference, sample_name, out_dir, config=None, cancel=None):
    """Align a single read unit, returning the duplicate marked BAM and metrics.

    read_unit -- dictionary with `name`, `fastq1` and optionally `fastq2`.
    reference -- dictionary with the bwa indexed `fasta`.
    """
    if config is None: config = {}
    name = read_unit["name"]
    work_dir = utils.safe_makedir(os.path.join(out_dir, "align", name))
    sort_bam = os.path.join(work_dir, "%s-%s-sort.bam" % (sample_name, name))
    if not utils.file_exists(sort_bam):
        bwa = config_utils.get_program("bwa", config)
        samtools = config_utils.get_program("samtools", config)
        cores = dd.get_num_cores(config)
        ref_file = reference["fasta"]
        fastq1 = read_unit["fastq1"]
        fastq2 = read_unit.get("fastq2") or ""
        rg_info = "@RG\\tID:{name}\\tPL:illumina\\tPU:{name}\\tSM:{sample_name}".format(**locals())
        with file_transaction(config, sort_bam) as tx_out_file:
            cmd = ("{bwa} mem -t {cores} -R '{rg_info}' {ref_file} {fastq1} {fastq2} | "
                   "{samtools} sort -@ {cores} -T {tx_out_file}-tmp -o {tx_out_file} -")
            do.run(cmd.format(**locals()), "bwa mem alignment: %s %s" % (sample_name, name),
                   checks=[do.file_nonempty(tx_out_file)], cancel=cancel)
    dup_bam, dup_metrics = mark_duplicates(sort_bam, config, cancel)
    bai = index(dup_bam, config, cancel)
    return {"bam": dup_bam, "bai": bai, "dup_metrics": dup_metrics,
            "size_gb": utils.get_size_gb(dup_bam)}

def mark_duplicates(in_bam, config, cancel=None):
    """Mark duplicates with Picard, returning the output BAM and duplication metrics.
    """
    base, ext = os.path.splitext(in_bam)
    dup_bam = "%s-dup%s" % (base, ext)
    dup_metrics = "%s-dup.dup_metrics" % base
    if not utils.file_exists(dup_bam):
        with tx_tmpdir(config) as tmp_dir:
            with file_transaction(config, dup_bam, dup_metrics) as (tx_dup_bam, tx_dup_metrics):
                opts = [("INPUT", in_bam),
                        ("OUTPUT", tx_dup_bam),
                        ("TMP_DIR", tmp_dir),
                        ("REMOVE_DUPLICATES", "false"),
                        ("METRICS_FILE", tx_dup_metrics)]
                picard.run("MarkDuplicates", opts, config, cancel=cancel)
    return dup_bam, dup_metrics

def index(in_bam, config, cancel=None):
    """Index a BAM file with samtools, returning the index path.
    """
    index_file = in_bam + ".bai"
    if not utils.file_exists(index_file):
        samtools = config_utils.get_program("samtools", config)
        cores = dd.get_num_cores(config)
        with file_transaction(config, index_file) as tx_index_file:
            do.run([samtools, "index", "-@", cores, in_bam, tx_index_file],
                   "Index BAM file: %s" % os.path.basename(in_bam), cancel=cancel)
    return index_file

def merge_alignments(bams, sample_name, out_dir, config=None, cancel=None):
    """Merge aligned read units into the per-sample BAM.
    """
    if config is None: config = {}
    bams = [x for x in bams if x]
    if len(bams) == 1:
        logger.debug("Single read unit for %s, no merge needed" % sample_name)
        return {"bam": bams[0], "bai": index(bams[0], config, cancel)}
    out_file = os.path.join(utils.safe_makedir(os.path.join(out_dir, "merged")),
                            "%s.bam" % sample_name)
    if not utils.file_exists(out_file):
        samtools = config_utils.get_program("samtools", config)
        cores = dd.get_num_cores(config)
        with file_transaction(config, out_file) as tx_out_file:
            do.run([samtools, "merge", "-@", cores, "-f", tx_out_file] + bams,
                   "Merge %s read units: %s" % (len(bams), sample_name), cancel=cancel)
    return {"bam": out_file, "bai": index(out_file, config, cancel)}
