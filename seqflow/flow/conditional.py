"""Run guarded sub-workflows only when their condition holds.

A conditional waits for every reference in its gate expression and in its
guarded nodes, then evaluates the gate once:

  - true: the guarded nodes run as a nested WorkflowRun, sharing the parent's
    inputs, resolved values, cancellation and completion listeners.
  - false or absent: every declared output resolves to absent and none of the
    guarded nodes are instantiated.
"""
import collections

from seqflow.flow import defs, expression
from seqflow.flow import run as wrun
from seqflow.flow.errors import RunCancelled, UpstreamFailed
from seqflow.flow.values import absent_outputs
from seqflow.log import logger

# gate states, recorded on the conditional's node state while it runs
AWAITING = "awaiting"

def run_conditional(node, run, scheduler_cls):
    """Evaluate the gate of a conditional node and run its sub-workflow if true.

    Returns (whether the guarded nodes ran, outputs). Raises the originating error of the first
    failing guarded node if the sub-workflow fails.
    """
    run.transition(node.name, AWAITING)
    gate = run.resolve(node.when)
    if not expression.is_true(gate):
        logger.info("%s: condition is %s, skipping %s guarded node(s)" % (node.name, gate, len(node.nodes)))
        return False, absent_outputs(node.outputs.keys())
    if run.cancelled:
        raise RunCancelled("Cancelled before starting guarded nodes", node.name)
    run.transition(node.name, wrun.RUNNING)
    child = wrun.WorkflowRun(defs.workflow(node.name, node.nodes, []), {}, parent=run)
    with run.lock:
        run.children[node.name] = child
    status = scheduler_cls(child).execute()
    if status == wrun.CANCELLED:
        raise RunCancelled("Cancelled while running guarded nodes", node.name)
    elif status == wrun.FAILED:
        failures = child.failures()
        if failures:
            raise list(failures.values())[0]
        raise UpstreamFailed("Guarded nodes failed", node.name)
    out = collections.OrderedDict()
    for name, binding in node.outputs.items():
        out[name] = child.resolve(binding)
    return True, out
