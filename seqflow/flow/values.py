"""Resolved values that may be absent.

A binding resolves either to a plain Python value (including None) or to
ABSENT, the marker for a value that was skipped upstream: a conditional that
did not run, or a task whose own inputs were absent.
"""


class _Absent(object):
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(_Absent, cls).__new__(cls)
        return cls._instance

    def __repr__(self):
        return "ABSENT"

    def __bool__(self):
        return False

    def __reduce__(self):
        return (_Absent, ())

ABSENT = _Absent()

def is_absent(value):
    return value is ABSENT

def present(values):
    """Retrieve the non-absent values from a collection, preserving order.
    """
    return [x for x in values if not is_absent(x)]

def absent_outputs(names):
    return dict((name, ABSENT) for name in names)
