"""Fan a task out over a collection whose size is only known at runtime.

A scatter runs in two phases: the scheduler resolves the collection, then
one task instance per element is registered in the run as
`<scatter>[<index>]` and run with bounded concurrency. Results come back in
input order regardless of which element finishes first.
"""
import collections

import joblib

from seqflow.flow import run as wrun
from seqflow.flow import tasks
from seqflow.flow.errors import RunCancelled, ScatterLengthMismatch, TaskInvocationFailed
from seqflow.log import logger
from seqflow.pipeline import datadict as dd

Outcome = collections.namedtuple("Outcome", "index outputs error")

def child_id(name, index):
    return "%s[%s]" % (name, index)

def num_workers(node, items, config):
    """Worker limit: the scatter's own concurrency, then configuration, then one per element.
    """
    limit = node.concurrency or dd.get_max_workers(config) or len(items)
    return max(1, min(int(limit), len(items)))

def run_scatter(node, run, items, shared):
    """Run the scatter task for every element, returning outputs aligned with items.

    node -- The Scatter definition.
    items -- The resolved, ordered collection.
    shared -- Resolved values for the task inputs shared by all elements.

    Returns a dictionary of output name to list of values. Raises
    TaskInvocationFailed for the first failing element, by input order, once
    the failure policy allows the scatter to finish.
    """
    outputs = node.task.outputs
    items = list(items)
    if len(items) == 0:
        return collections.OrderedDict((k, []) for k in outputs)
    fail_fast = node.fail_fast if node.fail_fast is not None else dd.get_fail_fast(run.config)
    force_cancel = node.force_cancel if node.force_cancel is not None else dd.get_force_cancel(run.config)
    scope = wrun.CancelScope(run.cancel_scope)
    for i in range(len(items)):
        run.register(child_id(node.name, i))

    def _run_element(i, item):
        cid = child_id(node.name, i)
        if scope.is_set():
            run.transition(cid, wrun.CANCELLED)
            return Outcome(i, None, RunCancelled("Not started, scatter cancelled", cid))
        inputs = dict(shared)
        inputs[node.item] = item
        try:
            out = tasks.run_task(node.task, run, inputs, node_id=cid, scope=scope)
        except RunCancelled as e:
            run.transition(cid, wrun.CANCELLED, error=e)
            return Outcome(i, None, e)
        except TaskInvocationFailed as e:
            run.transition(cid, wrun.FAILED, error=e)
            logger.warning("%s: element %s failed: %s" % (node.name, i, e))
            if fail_fast:
                if force_cancel:
                    scope.set()
                else:
                    scope.set(propagate=False)
            return Outcome(i, None, e)
        run.transition(cid, wrun.SUCCEEDED, outputs=out)
        return Outcome(i, out, None)

    n_jobs = num_workers(node, items, run.config)
    logger.debug("%s: scattering over %s elements with %s workers" % (node.name, len(items), n_jobs))
    try:
        results = joblib.Parallel(n_jobs=n_jobs, backend="threading", batch_size=1)(
            joblib.delayed(_run_element)(i, item) for i, item in enumerate(items))
    finally:
        run.cancel_scope.discard(scope)
    return _gather(node, items, results)

def _gather(node, items, results):
    errors = [x.error for x in results if isinstance(x.error, TaskInvocationFailed)]
    if errors:
        raise errors[0]
    cancelled = [x.error for x in results if x.error is not None]
    if cancelled:
        raise cancelled[0]
    if len(results) != len(items) or [x.index for x in results] != list(range(len(items))):
        raise ScatterLengthMismatch("Expected %s ordered results, found %s" % (len(items), len(results)),
                                    node.name)
    out = collections.OrderedDict()
    for k in node.task.outputs:
        out[k] = [x.outputs[k] for x in results]
    return out
