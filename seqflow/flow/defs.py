"""Definitions of workflows: tasks, nodes and the bindings connecting them.

A workflow is a list of nodes plus a set of named final outputs. Nodes read
their inputs through bindings, each of which is one of:

  - lit(value) -- a literal value.
  - inp(name) -- a value from the top-level input set of the run.
  - ref(node, output) -- an output of another node.
  - an expression from seqflow.flow.expression combining the above.

The references between nodes define the dependency graph the scheduler runs.
"""
import collections

from seqflow.flow.expression import Expr

Literal = collections.namedtuple("Literal", "value")
Input = collections.namedtuple("Input", "name")
Ref = collections.namedtuple("Ref", "node output")

Task = collections.namedtuple("Task", "name fn inputs outputs attempts timeout retry_wait "
                                      "required optional resources")
Scatter = collections.namedtuple("Scatter", "name task over item concurrency fail_fast force_cancel")
Conditional = collections.namedtuple("Conditional", "name when nodes outputs")
Aggregate = collections.namedtuple("Aggregate", "name reducer over output")
Output = collections.namedtuple("Output", "name binding required")
Workflow = collections.namedtuple("Workflow", "name nodes outputs")

BINDING_TYPES = (Literal, Input, Ref, Expr)

def lit(value):
    return Literal(value)

def inp(name):
    return Input(name)

def ref(node, output="value"):
    if isinstance(node, tuple) and hasattr(node, "name"):
        node = node.name
    return Ref(node, output)

def as_binding(x):
    """Treat plain Python values as literals so definitions can stay terse.
    """
    return x if isinstance(x, BINDING_TYPES) else Literal(x)

def task(name, fn, inputs=None, outputs=None, attempts=None, timeout=None, retry_wait=None,
         required=None, optional=None, resources=None):
    """Represent a single unit of work invoking an external capability.

    name -- Unique identifier of the node in the workflow.
    fn -- The capability to call. It receives the resolved inputs as keyword
      arguments, plus a `cancel` threading.Event if it declares that parameter,
      and returns a dictionary keyed by the declared outputs. Outputs missing
      from the returned dictionary resolve as absent. With a single output,
      any value other than a dictionary is taken as that output.
    inputs -- Mapping of keyword argument name to binding.
    outputs -- Names of the outputs this task produces.
    attempts -- Total number of attempts before the task fails. Defaults to
      the configured resources for this task.
    timeout -- Wall clock limit in seconds for a single attempt.
    retry_wait -- Seconds to wait between attempts, useful on preemptible compute.
    required -- Inputs which must be present. An absent value fails the task
      with MissingRequiredInput.
    optional -- Inputs which may be absent. They are passed to fn as ABSENT.
      Any other absent input makes the whole task resolve as absent without
      being invoked.
    resources -- Name to look up resource settings under in the configuration.
      Defaults to the task name.
    """
    if inputs is None: inputs = {}
    if outputs is None: outputs = ["value"]
    inputs = collections.OrderedDict((k, as_binding(v)) for k, v in inputs.items())
    return Task(name, fn, inputs, list(outputs), attempts, timeout, retry_wait,
                frozenset(required or []), frozenset(optional or []), resources or name)

def scatter(name, task, over, item="item", concurrency=None, fail_fast=None, force_cancel=None):
    """Run a task once for every element of a collection only known at runtime.

    task -- The task template. Its input named by `item` receives the element,
      all other inputs are shared by every element.
    over -- Binding resolving to the ordered collection to scatter over.
    concurrency -- Maximum number of elements running at once.
    fail_fast -- Stop starting new elements once one fails, instead of waiting
      for every element to finish.
    force_cancel -- With fail_fast, also signal already running siblings to
      stop instead of letting them finish and discarding their results.

    Each output of the task becomes a list, aligned index for index with the
    collection.
    """
    return Scatter(name, task, as_binding(over), item, concurrency, fail_fast, force_cancel)

def conditional(name, when, nodes, outputs):
    """A sub-workflow run only when an expression evaluates true.

    when -- Binding or expression evaluated once its references are resolved.
    nodes -- Nodes of the guarded sub-workflow. They may reference outputs of
      nodes outside of the conditional and top-level inputs.
    outputs -- Mapping of declared output name to binding inside the sub-workflow.
      All resolve to absent when the condition is false.
    """
    outputs = collections.OrderedDict((k, as_binding(v)) for k, v in outputs.items())
    return Conditional(name, as_binding(when), list(nodes), outputs)

def aggregate(name, reducer, over, output="value"):
    """Reduce a scattered collection into a single value.

    reducer -- Name of a reducer in seqflow.flow.aggregate or a callable.
    """
    return Aggregate(name, reducer, as_binding(over), output)

def output(name, binding, required=False):
    return Output(name, as_binding(binding), required)

def workflow(name, nodes, outputs):
    return Workflow(name, list(nodes), list(outputs))

# ## Introspection

def node_outputs(node):
    """Retrieve the declared output names of any node type.
    """
    if isinstance(node, Task):
        return list(node.outputs)
    elif isinstance(node, Scatter):
        return list(node.task.outputs)
    elif isinstance(node, Conditional):
        return list(node.outputs.keys())
    elif isinstance(node, Aggregate):
        return [node.output]
    else:
        raise ValueError("Unexpected node type: %s" % (node,))

def node_bindings(node):
    """Retrieve (name, binding) pairs a node reads before it can start.

    Conditionals depend on their gate expression and on every reference
    the guarded nodes make to nodes outside of the conditional.
    """
    if isinstance(node, Task):
        return list(node.inputs.items())
    elif isinstance(node, Scatter):
        out = [("over", node.over)]
        out += [(k, v) for k, v in node.task.inputs.items() if k != node.item]
        return out
    elif isinstance(node, Conditional):
        out = [("when", node.when)]
        internal = set(n.name for n in iter_nodes(node.nodes))
        for sub in iter_nodes(node.nodes):
            for k, v in node_bindings(sub):
                if binding_sources(v) - internal:
                    out.append(("%s.%s" % (sub.name, k), v))
        return out
    elif isinstance(node, Aggregate):
        return [("over", node.over)]
    else:
        raise ValueError("Unexpected node type: %s" % (node,))

def node_required(node):
    """Input names which fail the node, instead of making it absent, when missing.
    """
    if isinstance(node, Task):
        return node.required
    elif isinstance(node, Scatter):
        return node.task.required
    return frozenset([])

def iter_nodes(nodes):
    """Iterate over nodes, descending into the sub-workflows of conditionals.
    """
    for node in nodes:
        yield node
        if isinstance(node, Conditional):
            for sub in iter_nodes(node.nodes):
                yield sub

def binding_sources(binding):
    """Node identifiers a binding references, directly or through expressions.
    """
    if isinstance(binding, Ref):
        return set([binding.node])
    elif isinstance(binding, Expr):
        out = set([])
        for arg in binding.args:
            out |= binding_sources(arg)
        return out
    return set([])

def binding_inputs(binding):
    """Top-level input names a binding references.
    """
    if isinstance(binding, Input):
        return set([binding.name])
    elif isinstance(binding, Expr):
        out = set([])
        for arg in binding.args:
            out |= binding_inputs(arg)
        return out
    return set([])

def workflow_inputs(workflow):
    """Top-level input names read anywhere in a workflow, including sub-workflows.
    """
    names = set([])
    for node in iter_nodes(workflow.nodes):
        for _, binding in node_bindings(node):
            names |= binding_inputs(binding)
    for out in workflow.outputs:
        names |= binding_inputs(out.binding)
    return names
