"""Errors raised while building and running workflows.

Every error carries the identifier of the node it originated from, so a
failed run can report which parts of the graph went wrong.
"""


class WorkflowError(Exception):
    def __init__(self, msg, node=None):
        self.node = node
        if node:
            msg = "%s: %s" % (node, msg)
        super(WorkflowError, self).__init__(msg)

class InvalidWorkflow(WorkflowError, ValueError):
    pass

class CycleDetected(WorkflowError):
    """Input bindings form a cycle, reported before any node executes.
    """
    def __init__(self, cycle):
        self.cycle = list(cycle)
        super(CycleDetected, self).__init__("Binding cycle detected: %s" % " -> ".join(self.cycle))

class TaskInvocationFailed(WorkflowError):
    """An external capability did not succeed within its retry budget.
    """
    def __init__(self, node, attempts, cause):
        self.attempts = attempts
        self.cause = cause
        super(TaskInvocationFailed, self).__init__("failed after %s attempt(s): %s" % (attempts, cause),
                                                   node)

    @property
    def diagnostic(self):
        return str(self.cause)

class TimeoutExceeded(TaskInvocationFailed):
    pass

class MissingRequiredInput(WorkflowError):
    pass

class MissingRequiredOutput(WorkflowError):
    pass

class UpstreamFailed(WorkflowError):
    pass

class NoValueSelected(WorkflowError):
    pass

class ScatterLengthMismatch(WorkflowError):
    pass

class ExpressionError(WorkflowError):
    pass

class RunCancelled(WorkflowError):
    pass

class CheckpointError(WorkflowError):
    """Node outputs could not be written to or read back from the checkpoint store.
    """
    pass
