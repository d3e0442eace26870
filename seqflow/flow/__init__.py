"""Workflow orchestration: task graphs with scatter, conditionals and aggregation.

  - defs.py: static definitions of tasks, nodes, bindings and workflows.
  - expression.py: evaluate gating and sizing expressions over resolved values.
  - scheduler.py: drive a workflow run from its inputs to a terminal status.
    - tasks.py: run a single task instance with retries and timeouts.
    - scatter.py: fan a task out over a runtime sized collection.
    - conditional.py: run guarded sub-workflows.
    - aggregate.py: reduce scattered outputs to single values.
  - results.py: assemble the final named outputs of a run.
  - run.py: run scoped node states, cancellation and binding resolution.
  - checkpoint.py: persist node outputs so interrupted runs can resume.
  - values.py, errors.py: the absent marker and the error hierarchy.
"""
