"""Drive a workflow run from its input set to a terminal status.

The scheduler builds the dependency graph from the bindings of every node,
rejecting unknown references and cycles before anything runs. Nodes without
dependencies start immediately; everything else is submitted from the
completion callback of its last dependency. Independent ready nodes run
concurrently on a thread pool and the calling thread waits on a condition
variable until every node has reached a terminal status.

Failure policy: once a node fails no new node starts. Nodes already running
finish. Direct dependents of the failed node resolve immediately, failing if
they required its output and becoming absent otherwise.
"""
import collections
import functools
import threading
from concurrent import futures

from seqflow.flow import aggregate, conditional, defs, results, scatter, tasks
from seqflow.flow import run as wrun
from seqflow.flow.checkpoint import CheckpointStore
from seqflow.flow.errors import (CheckpointError, CycleDetected, InvalidWorkflow, MissingRequiredInput,
                                 RunCancelled, UpstreamFailed, WorkflowError)
from seqflow.flow.values import absent_outputs, is_absent
from seqflow.log import logger
from seqflow.pipeline import datadict as dd

# ## Graph construction

def validate(workflow, outer_ids=None):
    """Check identifiers, references and acyclicity of a workflow and its sub-workflows.

    Returns a mapping of node identifier to the identifiers it depends on
    within this workflow.
    """
    outer_ids = set(outer_ids or [])
    seen = set([])
    for node in defs.iter_nodes(workflow.nodes):
        if node.name in seen or node.name in outer_ids:
            raise InvalidWorkflow("Duplicate node identifier", node.name)
        seen.add(node.name)
    local_ids = [n.name for n in workflow.nodes]
    known = set(local_ids) | outer_ids
    deps = collections.OrderedDict()
    for node in workflow.nodes:
        sources = set([])
        for name, binding in defs.node_bindings(node):
            sources |= defs.binding_sources(binding)
        unknown = sources - known
        if isinstance(node, defs.Conditional):
            unknown -= set(n.name for n in defs.iter_nodes(node.nodes))
        if unknown:
            raise InvalidWorkflow("References unknown node(s): %s" % ", ".join(sorted(unknown)), node.name)
        deps[node.name] = [x for x in local_ids if x in sources]
    for out in workflow.outputs:
        unknown = defs.binding_sources(out.binding) - known
        if unknown:
            raise InvalidWorkflow("Output %s references unknown node(s): %s" %
                                  (out.name, ", ".join(sorted(unknown))))
    cycle = find_cycle(deps)
    if cycle:
        raise CycleDetected(cycle)
    for node in workflow.nodes:
        if isinstance(node, defs.Conditional):
            validate(defs.workflow(node.name, node.nodes, []), known | set([node.name]))
    return deps

def find_cycle(deps):
    """Depth first search for a cycle, returning the identifiers along it.
    """
    visiting, done = set([]), set([])
    path = []

    def visit(name):
        visiting.add(name)
        path.append(name)
        for dep in deps.get(name, []):
            if dep in visiting:
                return path[path.index(dep):] + [dep]
            if dep not in done:
                found = visit(dep)
                if found:
                    return found
        visiting.discard(name)
        done.add(name)
        path.pop()
        return None

    for name in deps:
        if name not in done:
            found = visit(name)
            if found:
                return found
    return None

def _invert(deps):
    out = collections.OrderedDict((k, []) for k in deps)
    for name, sources in deps.items():
        for source in sources:
            out[source].append(name)
    return out

# ## Scheduling

class Scheduler(object):
    """Run the nodes of a WorkflowRun in dependency order.

    max_workers -- Nodes running at once, defaulting to the configured
      parallel max_workers and then to the thread pool default.
    """
    def __init__(self, run, max_workers=None):
        self.run = run
        self.nodes = collections.OrderedDict((n.name, n) for n in run.workflow.nodes)
        outer = _outer_ids(run.parent)
        self.deps = validate(run.workflow, outer)
        self.dependents = _invert(self.deps)
        self.remaining = dict((k, set(v)) for k, v in self.deps.items())
        self.max_workers = max_workers or dd.get_max_workers(run.config)
        self.failed = False
        self._submitted = set([])
        self._outstanding = len(self.nodes)
        self._cond = threading.Condition(run.lock)
        self._pool = None

    def execute(self):
        """Run every node to a terminal status, returning the final run status.
        """
        run = self.run
        run.status = wrun.RUNNING
        logger.info("Running %s (%s) with %s node(s)" % (run.workflow.name, run.run_id, len(self.nodes)))
        self._pool = futures.ThreadPoolExecutor(max_workers=self.max_workers)
        try:
            for name, deps in self.deps.items():
                if not deps:
                    self.submit(name)
            with self._cond:
                while self._outstanding > 0:
                    self._cond.wait()
        finally:
            self._pool.shutdown(wait=True)
        if run.cancelled:
            run.status = wrun.CANCELLED
        elif self.failed:
            run.status = wrun.FAILED
        else:
            run.status = wrun.SUCCEEDED
        logger.info("Finished %s (%s): %s" % (run.workflow.name, run.run_id, run.status))
        return run.status

    def submit(self, name):
        """Start a node whose bindings are all resolved.
        """
        run = self.run
        with self._cond:
            if name in self._submitted or run.state(name).status in wrun.TERMINAL:
                return
            self._submitted.add(name)
            stop_status = wrun.CANCELLED if run.cancelled else (wrun.SKIPPED if self.failed else None)
        if stop_status:
            self._finish(name, stop_status)
            return
        if run.store is not None:
            try:
                restored = run.store.load(run.run_id, name)
            except CheckpointError as e:
                self._finish(name, wrun.FAILED, error=e)
                return
            if restored is not None:
                logger.info("%s: restored from checkpoint" % name)
                self._finish(name, wrun.SUCCEEDED, outputs=restored, save=False)
                return
        run.transition(name, wrun.READY)
        logger.debug("%s: ready, submitting" % name)
        future = self._pool.submit(self._execute_node, self.nodes[name])
        future.add_done_callback(functools.partial(self.on_node_complete, self.nodes[name]))

    def on_node_complete(self, node, future):
        """Record the outcome of a finished node and start dependents which became ready.
        """
        try:
            status, outputs = future.result()
            error = None
        except RunCancelled as e:
            status, outputs, error = wrun.CANCELLED, None, e
        except WorkflowError as e:
            status, outputs, error = wrun.FAILED, None, e
        except Exception as e:
            logger.exception("%s: unexpected error" % node.name)
            status, outputs, error = wrun.FAILED, None, e
        self._finish(node.name, status, outputs, error)

    def _execute_node(self, node):
        """Resolve inputs and run a node, returning (status, outputs).
        """
        run = self.run
        if isinstance(node, defs.Conditional):
            ran, outputs = conditional.run_conditional(node, run, Scheduler)
            return (wrun.SUCCEEDED if ran else wrun.ABSENT_STATUS), outputs
        values = collections.OrderedDict((k, run.resolve(b)) for k, b in defs.node_bindings(node))
        if _propagates_absent(node, values):
            logger.info("%s: upstream values absent, skipping" % node.name)
            return wrun.ABSENT_STATUS, absent_outputs(defs.node_outputs(node))
        if isinstance(node, defs.Task):
            return wrun.SUCCEEDED, tasks.run_task(node, run, values)
        elif isinstance(node, defs.Scatter):
            run.transition(node.name, wrun.RUNNING)
            items = values.pop("over")
            if not isinstance(items, (list, tuple)):
                raise InvalidWorkflow("Scatter collection must be a list, found %s" % type(items).__name__,
                                      node.name)
            return wrun.SUCCEEDED, scatter.run_scatter(node, run, items, values)
        elif isinstance(node, defs.Aggregate):
            run.transition(node.name, wrun.RUNNING)
            return wrun.SUCCEEDED, aggregate.run_aggregate(node, values["over"])
        raise InvalidWorkflow("Unexpected node type %s" % type(node).__name__, node.name)

    def _finish(self, name, status, outputs=None, error=None, save=True):
        run = self.run
        if status == wrun.ABSENT_STATUS and outputs is None:
            outputs = absent_outputs(defs.node_outputs(self.nodes[name]))
        if status == wrun.SUCCEEDED and save and run.store is not None:
            try:
                run.store.save(run.run_id, name, outputs)
            except CheckpointError as e:
                status, outputs, error = wrun.FAILED, None, e
        if not run.transition(name, status, outputs, error):
            return
        ready = []
        try:
            if status == wrun.FAILED:
                logger.error("%s: failed: %s" % (name, error))
            else:
                logger.info("%s: %s" % (name, status))
            run.notify(name)
        finally:
            # every terminal transition is counted, or execute never returns
            with self._cond:
                self._outstanding -= 1
                if status == wrun.FAILED:
                    self.failed = True
                for dep in self.dependents[name]:
                    self.remaining[dep].discard(name)
                    if status in wrun.RESOLVED and not self.remaining[dep]:
                        ready.append(dep)
                self._cond.notify_all()
        if status in wrun.RESOLVED:
            for dep in ready:
                self.submit(dep)
        else:
            self._propagate(name, status)

    def _propagate(self, name, status):
        """Resolve dependents of a node which finished without outputs.
        """
        for dep in self.dependents[name]:
            if status == wrun.FAILED:
                if _requires(self.nodes[dep], name):
                    self._finish(dep, wrun.FAILED,
                                 error=UpstreamFailed("Required input from %s failed" % name, dep))
                else:
                    self._finish(dep, wrun.ABSENT_STATUS)
            else:
                self._finish(dep, status)

def _outer_ids(run):
    out = set([])
    while run is not None:
        out |= set(run.states.keys())
        run = run.parent
    return out

def _requires(node, source):
    required = defs.node_required(node)
    for name, binding in defs.node_bindings(node):
        if name in required and source in defs.binding_sources(binding):
            return True
    return False

def _propagates_absent(node, values):
    """Decide whether absent inputs make a node absent, raising for required ones.
    """
    required = defs.node_required(node)
    optional = node.optional if isinstance(node, defs.Task) else \
        (node.task.optional if isinstance(node, defs.Scatter) else frozenset([]))
    for name, value in values.items():
        if is_absent(value):
            if name in required:
                raise MissingRequiredInput("Required input %s is absent" % name, node.name)
            elif name not in optional:
                return True
    return False

# ## Running

def run_workflow(workflow, inputs, config=None, run_id=None, listeners=None, store=None):
    """Run a workflow with a concrete input set, returning a RunResult.

    A CheckpointStore is created from the configured checkpoint_dir when no
    store is passed, enabling resumption of runs with the same run_id.
    """
    config = config or {}
    if store is None and dd.get_checkpoint_dir(config):
        store = CheckpointStore(dd.get_checkpoint_dir(config))
    missing = sorted(defs.workflow_inputs(workflow) - set(inputs.keys()))
    if missing:
        logger.info("Inputs not provided, resolving as absent: %s" % ", ".join(missing))
    run = wrun.WorkflowRun(workflow, inputs, config, run_id=run_id, listeners=listeners, store=store)
    Scheduler(run).execute()
    return results.collect(run)
