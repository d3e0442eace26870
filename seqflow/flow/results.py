"""Assemble the final named outputs of a finished workflow run.
"""
import collections

from seqflow.flow import run as wrun
from seqflow.flow.errors import MissingRequiredOutput
from seqflow.flow.run import PendingValue
from seqflow.flow.values import is_absent
from seqflow.log import logger


class RunResult(object):
    """Outcome of a workflow run.

    status -- Terminal run status: succeeded, failed or cancelled.
    outputs -- Declared outputs by name. Optional outputs may be ABSENT. For
      failed and cancelled runs only outputs which resolved are included.
    succeeded -- Identifiers of nodes which succeeded, for recovering partial results.
    failures -- Errors by identifier of the failing node.
    """
    def __init__(self, run_id, status, outputs, succeeded, failures):
        self.run_id = run_id
        self.status = status
        self.outputs = outputs
        self.succeeded = succeeded
        self.failures = failures

    def __repr__(self):
        return "RunResult(%s, %s, failures=%s)" % (self.run_id, self.status, list(self.failures.keys()))

    @property
    def ok(self):
        return self.status == wrun.SUCCEEDED

    def check(self):
        """Raise the first failure of an unsuccessful run.
        """
        if not self.ok:
            if self.failures:
                raise list(self.failures.values())[0]
            raise RuntimeError("Workflow run %s finished with status %s" % (self.run_id, self.status))
        return self

def collect(run):
    """Build the RunResult for a run which has no pending or running nodes left.
    """
    outputs = collections.OrderedDict()
    failures = run.failures()
    status = run.status
    for out in run.workflow.outputs:
        try:
            value = run.resolve(out.binding)
        except PendingValue:
            continue
        if out.required and is_absent(value):
            if status == wrun.SUCCEEDED:
                status = wrun.FAILED
            failures[out.name] = MissingRequiredOutput("Required output %s is absent" % out.name, out.name)
            logger.error("%s: required output is absent" % out.name)
        outputs[out.name] = value
    run.status = status
    return RunResult(run.run_id, status, outputs, run.succeeded(), failures)
