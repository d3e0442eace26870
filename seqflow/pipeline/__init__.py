"""High level code for driving a per-sample alignment and QC workflow.

  - main.py: the workflow definition and entry point for running a sample.
  - config_utils.py: load YAML configuration and look up resources.
  - datadict.py: access run configuration and sample inputs in a clearer way.
"""
