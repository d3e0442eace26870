"""Run-scoped state for a single workflow execution.

A WorkflowRun owns the node status and output table for one execution. It is
passed explicitly to every component, keeping concurrent runs in the same
process isolated from each other. All mutation goes through `transition`,
which holds the run lock; resolved outputs are never modified afterwards
and are safe to read from any thread.
"""
import collections
import contextlib
import threading
import uuid

from seqflow.flow import defs, expression
from seqflow.flow.errors import WorkflowError
from seqflow.flow.values import ABSENT
from seqflow.log import logger

# node states
PENDING = "pending"
READY = "ready"
RUNNING = "running"
RETRYING = "retrying"
SUCCEEDED = "succeeded"
FAILED = "failed"
ABSENT_STATUS = "absent"
SKIPPED = "skipped"
CANCELLED = "cancelled"

TERMINAL = frozenset([SUCCEEDED, FAILED, ABSENT_STATUS, SKIPPED, CANCELLED])
RESOLVED = frozenset([SUCCEEDED, ABSENT_STATUS])

class NodeState(object):
    def __init__(self, node_id):
        self.node_id = node_id
        self.status = PENDING
        self.outputs = None
        self.error = None
        self.attempts = 0

    def __repr__(self):
        return "NodeState(%s, %s)" % (self.node_id, self.status)

class CancelScope(object):
    """Cancellation signal fanned out to everything registered underneath it.

    Running task attempts register a threading.Event for the duration of the
    attempt; nested scopes (the elements of a scatter) register themselves so
    they can be cancelled on their own or together with the run.
    """
    def __init__(self, parent=None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._members = set([])
        if parent is not None:
            parent.add(self)

    def add(self, member):
        with self._lock:
            self._members.add(member)
        if self._event.is_set():
            member.set()

    def discard(self, member):
        with self._lock:
            self._members.discard(member)

    def set(self, propagate=True):
        """Cancel the scope. Without propagate, only work not yet registered notices.

        Members already registered keep running but stay attached, so a later
        propagating cancel, like cancelling the whole run, still reaches them.
        """
        with self._lock:
            self._event.set()
            members = list(self._members) if propagate else []
        for member in members:
            member.set()

    def is_set(self):
        return self._event.is_set()

    def wait(self, timeout=None):
        return self._event.wait(timeout)

    @contextlib.contextmanager
    def track(self, event):
        """Register an event to be set if this scope is cancelled while inside the block.
        """
        self.add(event)
        try:
            yield event
        finally:
            self.discard(event)

class PendingValue(WorkflowError):
    """A binding was read before its source node resolved.
    """
    pass

class WorkflowRun(object):
    """One execution of a workflow with a concrete input set.

    parent -- For conditional sub-workflows, the enclosing run. Bindings to
      nodes not found in this run are resolved through the parent, and the
      parent's cancellation scope and completion listeners are shared.
    """
    def __init__(self, workflow, inputs, config=None, run_id=None, parent=None,
                 listeners=None, store=None):
        self.workflow = workflow
        self.inputs = dict(inputs or {})
        self.config = config if config is not None else (parent.config if parent else {})
        self.run_id = run_id or (parent.run_id if parent else uuid.uuid4().hex[:12])
        self.parent = parent
        self.store = store if store is not None else (parent.store if parent else None)
        self.status = PENDING
        self.states = collections.OrderedDict()
        self.children = collections.OrderedDict()
        self.cancel_scope = parent.cancel_scope if parent else CancelScope()
        self.listeners = parent.listeners if parent else list(listeners or [])
        self.lock = threading.RLock()
        for node in workflow.nodes:
            self.states[node.name] = NodeState(node.name)

    def __repr__(self):
        return "WorkflowRun(%s, %s, %s)" % (self.workflow.name, self.run_id, self.status)

    # ## State transitions

    def state(self, node_id):
        return self.states[node_id]

    def register(self, node_id):
        """Add a dynamically created node, like the elements of a scatter.
        """
        with self.lock:
            if node_id not in self.states:
                self.states[node_id] = NodeState(node_id)
            return self.states[node_id]

    def transition(self, node_id, status, outputs=None, error=None):
        """Move a node to a new status, returning False if it already finished.

        Terminal transitions happen exactly once per node; late updates from
        cancelled or discarded work are ignored.
        """
        with self.lock:
            state = self.register(node_id)
            if state.status in TERMINAL:
                return False
            state.status = status
            if outputs is not None:
                state.outputs = dict(outputs)
            if error is not None:
                state.error = error
            if status == RUNNING:
                state.attempts += 1
            return True

    def notify(self, node_id):
        """Report a terminal node to every listener. Listener errors are logged, not raised.
        """
        state = self.states[node_id]
        for listener in self.listeners:
            try:
                listener(self, state)
            except Exception:
                logger.exception("%s: completion listener %s failed" % (node_id, listener))

    def cancel(self):
        """Signal running tasks to stop and prevent any new node from starting.
        """
        self.cancel_scope.set()

    @property
    def cancelled(self):
        return self.cancel_scope.is_set()

    # ## Binding resolution

    def lookup(self, node_id, output):
        """Resolved output of a node in this run or an enclosing one.
        """
        run = self
        while run is not None:
            if node_id in run.states:
                state = run.states[node_id]
                if state.status not in RESOLVED:
                    raise PendingValue("Output %s is not resolved, node is %s" % (output, state.status),
                                       node_id)
                return (state.outputs or {}).get(output, ABSENT)
            run = run.parent
        raise KeyError("Unknown node %s" % node_id)

    def input_value(self, name):
        run = self
        while run is not None:
            if name in run.inputs:
                return run.inputs[name]
            run = run.parent
        return ABSENT

    def resolve(self, binding):
        """Resolve a binding to its value, evaluating expressions.
        """
        if isinstance(binding, defs.Literal):
            return binding.value
        elif isinstance(binding, defs.Input):
            return self.input_value(binding.name)
        elif isinstance(binding, defs.Ref):
            return self.lookup(binding.node, binding.output)
        elif isinstance(binding, expression.Expr):
            return expression.evaluate(binding, self.resolve)
        return binding

    # ## Reporting

    def nodes_with_status(self, *statuses):
        with self.lock:
            return [k for k, v in self.states.items() if v.status in statuses]

    def failures(self):
        """Errors by node identifier, including those inside conditional sub-workflows.
        """
        out = collections.OrderedDict()
        with self.lock:
            for k, v in self.states.items():
                if v.status == FAILED and v.error is not None:
                    out[k] = v.error
            for child in self.children.values():
                out.update(child.failures())
        return out

    def succeeded(self):
        out = self.nodes_with_status(SUCCEEDED)
        for child in self.children.values():
            out.extend(child.succeeded())
        return out
