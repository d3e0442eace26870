"""Main entry point for running the per-sample alignment and quality control workflow.

Read units of a sample are aligned in parallel, merged into a single
alignment and summarized with quality metrics. Contamination estimates and
fingerprint cross-checks only run when requested for the sample:

    align (scatter over read units) -> merge -> metrics
          |-> total_size (sum of aligned sizes) -> use_reliable_tier
          |-> dup_metrics (representative duplication metrics)
          |-> fingerprint (if check_fingerprint and a haplotype_db)
    merge -> contamination (if check_contamination)
"""
import functools
import os

from seqflow import log
from seqflow.capabilities import align, contamination, fingerprint, metrics
from seqflow.flow import defs, scheduler
from seqflow.flow.defs import aggregate, conditional, inp, output, ref, scatter, task
from seqflow.flow.expression import and_, defined, gt
from seqflow.log import logger
from seqflow.pipeline import config_utils
from seqflow.pipeline import datadict as dd

DEFAULT_CAPABILITIES = {"align": align.align_unit,
                        "merge": align.merge_alignments,
                        "metrics": metrics.collect_metrics,
                        "contamination": contamination.estimate,
                        "fingerprint": fingerprint.crosscheck}

def get_capabilities(config=None, capabilities=None):
    """Retrieve the functions invoked by each task, supplied overrides first.

    Default capabilities receive the run configuration to find programs and
    resources; overrides are used as provided.
    """
    out = dict((k, functools.partial(fn, config=config or {})) for k, fn in DEFAULT_CAPABILITIES.items())
    out.update(capabilities or {})
    return out

def build_workflow(config=None, capabilities=None):
    """Define the per-sample workflow.
    """
    caps = get_capabilities(config, capabilities)
    sample_inputs = {"reference": inp("reference"), "sample_name": inp("sample_name"),
                     "out_dir": inp("work_dir")}
    align_task = task("align_unit", caps["align"],
                      inputs=dict(sample_inputs),
                      outputs=["bam", "bai", "dup_metrics", "size_gb"],
                      required=["reference", "sample_name", "out_dir"])
    nodes = [
        scatter("align", align_task, inp("read_units"), item="read_unit"),
        aggregate("total_size", "total", ref("align", "size_gb"), output="size_gb"),
        aggregate("dup_metrics", "select_first", ref("align", "dup_metrics")),
        task("merge", caps["merge"],
             inputs={"bams": ref("align", "bam"), "sample_name": inp("sample_name"),
                     "out_dir": inp("work_dir")},
             outputs=["bam", "bai"], required=["bams", "sample_name", "out_dir"]),
        task("metrics", caps["metrics"],
             inputs={"bam": ref("merge", "bam"), "reference": inp("reference"),
                     "sample_name": inp("sample_name"), "out_dir": inp("work_dir")},
             outputs=["reports"], required=["bam"]),
        conditional("contamination", inp("check_contamination"),
                    [task("verifybamid", caps["contamination"],
                          inputs={"bam": ref("merge", "bam"), "reference": inp("reference"),
                                  "contamination_model": inp("contamination_model"),
                                  "sample_name": inp("sample_name"), "out_dir": inp("work_dir")},
                          outputs=["estimate", "report"],
                          required=["bam", "contamination_model"])],
                    {"estimate": ref("verifybamid", "estimate"),
                     "report": ref("verifybamid", "report")}),
        conditional("fingerprint", and_(inp("check_fingerprint"), defined(inp("haplotype_db"))),
                    [task("crosscheck", caps["fingerprint"],
                          inputs={"bams": ref("align", "bam"), "haplotype_db": inp("haplotype_db"),
                                  "sample_name": inp("sample_name"), "out_dir": inp("work_dir")},
                          outputs=["report"], required=["bams"])],
                    {"report": ref("crosscheck", "report")}),
    ]
    outputs = [output("aligned_bam", ref("merge", "bam"), required=True),
               output("aligned_bai", ref("merge", "bai")),
               output("total_size_gb", ref("total_size", "size_gb")),
               output("use_reliable_tier", gt(ref("total_size", "size_gb"), inp("size_threshold"))),
               output("dup_metrics", ref("dup_metrics")),
               output("quality_metrics", ref("metrics", "reports")),
               output("contamination_estimate", ref("contamination", "estimate")),
               output("contamination_report", ref("contamination", "report")),
               output("fingerprint_report", ref("fingerprint", "report"))]
    return defs.workflow("sample_qc", nodes, outputs)

def sample_inputs(sample, config):
    """Normalize a sample description into the top-level inputs of a run.

    Unset values are left out so they resolve as absent.
    """
    inputs = {"sample_name": dd.get_sample_name(sample),
              "read_units": dd.get_read_units(sample),
              "reference": sample.get("reference"),
              "work_dir": os.path.abspath(dd.get_work_dir(sample) or os.getcwd()),
              "check_contamination": dd.get_check_contamination(sample),
              "contamination_model": dd.get_contamination_model(sample),
              "check_fingerprint": dd.get_check_fingerprint(sample),
              "haplotype_db": dd.get_haplotype_db(sample),
              "size_threshold": sample.get("size_threshold", dd.get_size_threshold(config))}
    return dict((k, v) for k, v in inputs.items() if v is not None)

def run_sample(sample, config=None, capabilities=None, run_id=None, listeners=None):
    """Run the workflow for a single sample, returning the RunResult.

    config -- Configuration dictionary or path to a YAML configuration file.
    """
    if isinstance(config, str):
        config = config_utils.load_config(config)
    else:
        config = config_utils.with_defaults(config)
    handler = log.create_base_logger(config)
    try:
        inputs = sample_inputs(sample, config)
        logger.info("Processing sample %s with %s read unit(s)" %
                    (inputs.get("sample_name"), len(inputs["read_units"])))
        result = scheduler.run_workflow(build_workflow(config, capabilities), inputs, config,
                                        run_id=run_id or inputs.get("sample_name"), listeners=listeners)
        logger.info("Sample %s finished: %s" % (inputs.get("sample_name"), result.status))
        return result
    finally:
        handler.pop_application()
        handler.close()
