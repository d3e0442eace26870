"""Reduce scattered output sequences into single values for downstream nodes.
"""
from seqflow.flow.errors import NoValueSelected
from seqflow.flow.values import is_absent, present


def total(values):
    """Numeric sum across scattered values, skipping absent elements.
    """
    return sum(present(values))

def select_first(values):
    """Pick the representative value: the first non-absent one in scatter order.
    """
    for x in values:
        if not is_absent(x):
            return x
    raise NoValueSelected("No value present among %s candidates" % len(values))

def collect(values):
    """Gather present values, flattening the lists returned by multi-file outputs.
    """
    out = []
    for x in present(values):
        if isinstance(x, (list, tuple)):
            out.extend(present(x))
        else:
            out.append(x)
    return out

REDUCERS = {"total": total,
            "sum": total,
            "select_first": select_first,
            "collect": collect}

def get_reducer(reducer):
    if callable(reducer):
        return reducer
    try:
        return REDUCERS[reducer]
    except KeyError:
        raise ValueError("Unknown reducer %s, available: %s" % (reducer, sorted(REDUCERS.keys())))

def run_aggregate(node, values):
    """Apply an aggregation node's reducer, tagging failures with the node identifier.
    """
    fn = get_reducer(node.reducer)
    try:
        return {node.output: fn(values)}
    except NoValueSelected as e:
        raise NoValueSelected(str(e), node.name)
