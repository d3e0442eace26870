"""Evaluate expressions over resolved upstream values.

Expressions drive conditional gates and size based policies, for instance
whether the summed size of all aligned read units is above a threshold:

    gt(total(ref("align", "size_gb")), inp("size_threshold"))

Evaluation is a pure function of the resolved leaf values. Absent operands
propagate: arithmetic, comparison, negation and concatenation over an absent
value are themselves absent rather than an error.
"""
import collections
import operator

from seqflow.flow.errors import ExpressionError
from seqflow.flow.values import ABSENT, is_absent, present

Expr = collections.namedtuple("Expr", "op args")

def _strict(fn):
    """Apply fn to operands, yielding absent if any operand is absent.
    """
    def run(*args):
        if any(is_absent(x) for x in args):
            return ABSENT
        return fn(*args)
    return run

def _div(a, b):
    try:
        return operator.truediv(a, b)
    except ZeroDivisionError:
        raise ExpressionError("Division by zero: %s / %s" % (a, b))

def _and(*args):
    if any(x is not ABSENT and not x for x in args):
        return False
    if any(is_absent(x) for x in args):
        return ABSENT
    return True

def _or(*args):
    if any(x is not ABSENT and x for x in args):
        return True
    if any(is_absent(x) for x in args):
        return ABSENT
    return False

def _concat(*args):
    return "".join(str(x) for x in args)

def _total(values):
    if not isinstance(values, (list, tuple)):
        raise ExpressionError("Can only total a collection, found %s" % (values,))
    return sum(present(values))

def _first_present(*args):
    for x in args:
        if not is_absent(x):
            return x
    return ABSENT

def _defined(x):
    return not is_absent(x)

OPS = {"add": _strict(operator.add),
       "sub": _strict(operator.sub),
       "mul": _strict(operator.mul),
       "div": _strict(_div),
       "gt": _strict(operator.gt),
       "ge": _strict(operator.ge),
       "lt": _strict(operator.lt),
       "le": _strict(operator.le),
       "eq": _strict(operator.eq),
       "ne": _strict(operator.ne),
       "not": _strict(operator.not_),
       "and": _and,
       "or": _or,
       "concat": _strict(_concat),
       "total": _strict(_total),
       "first_present": _first_present,
       "defined": _defined}

def evaluate(expr, resolve):
    """Evaluate an expression tree, resolving leaves with the supplied function.

    resolve maps a leaf binding (literal, input or reference) to its value.
    """
    if not isinstance(expr, Expr):
        return resolve(expr)
    try:
        fn = OPS[expr.op]
    except KeyError:
        raise ExpressionError("Unknown expression operator: %s" % expr.op)
    args = [evaluate(x, resolve) for x in expr.args]
    try:
        return fn(*args)
    except TypeError as msg:
        raise ExpressionError("Invalid operands for %s %s: %s" % (expr.op, args, msg))

def is_true(value):
    """Gate decision for a resolved condition: absent counts as false.
    """
    return not is_absent(value) and bool(value)

# ## Constructors

def _op(name, nargs=None):
    def build(*args):
        if nargs is not None and len(args) != nargs:
            raise ExpressionError("%s takes %s arguments, got %s" % (name, nargs, len(args)))
        return Expr(name, tuple(args))
    build.__name__ = name
    return build

add = _op("add", 2)
sub = _op("sub", 2)
mul = _op("mul", 2)
div = _op("div", 2)
gt = _op("gt", 2)
ge = _op("ge", 2)
lt = _op("lt", 2)
le = _op("le", 2)
eq = _op("eq", 2)
ne = _op("ne", 2)
not_ = _op("not", 1)
and_ = _op("and")
or_ = _op("or")
concat = _op("concat")
total = _op("total", 1)
first_present = _op("first_present")
defined = _op("defined", 1)
