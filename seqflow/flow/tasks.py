"""Run a single task instance: resolved inputs in, declared outputs out.

Capabilities run on unreliable, often preemptible, compute so every
invocation is retried up to its attempt budget. Each attempt may carry a
wall clock timeout; an attempt that times out counts as a retryable failure.
"""
import collections
import inspect
import threading
from concurrent import futures

from seqflow.flow import run as wrun
from seqflow.flow.errors import RunCancelled, TaskInvocationFailed, TimeoutExceeded
from seqflow.flow.values import ABSENT
from seqflow.log import logger
from seqflow.pipeline import config_utils


class AttemptTimeout(Exception):
    pass

def task_resources(task, config):
    """Retrieve attempts, timeout and retry wait for a task, explicit settings first.
    """
    resources = config_utils.get_resources(task.resources, config)
    attempts = task.attempts if task.attempts is not None else resources.get("attempts", 1)
    timeout = task.timeout if task.timeout is not None else resources.get("timeout")
    retry_wait = task.retry_wait if task.retry_wait is not None else resources.get("retry_wait", 0)
    return max(int(attempts), 1), timeout, retry_wait or 0

def run_task(task, run, inputs, node_id=None, scope=None):
    """Invoke the capability of a task, retrying failures up to the attempt budget.

    Returns a dictionary with a value for every declared output. Raises
    TaskInvocationFailed, or TimeoutExceeded if the final attempt timed out,
    once the budget is exhausted, and RunCancelled if cancellation arrives
    between attempts.
    """
    node_id = node_id or task.name
    scope = scope or run.cancel_scope
    attempts, timeout, retry_wait = task_resources(task, run.config)
    last_error = None
    for attempt in range(1, attempts + 1):
        if scope.is_set():
            raise RunCancelled("Cancelled before attempt %s" % attempt, node_id)
        run.transition(node_id, wrun.RUNNING)
        try:
            out = _normalize_outputs(task, _invoke(task, inputs, timeout, scope, node_id))
        except RunCancelled:
            raise
        except Exception as e:
            last_error = e
            if scope.is_set():
                raise RunCancelled("Cancelled during attempt %s: %s" % (attempt, e), node_id)
            if attempt < attempts:
                logger.warning("%s: attempt %s of %s failed, retrying: %s" % (node_id, attempt, attempts, e))
                run.transition(node_id, wrun.RETRYING)
                if retry_wait and scope.wait(retry_wait):
                    raise RunCancelled("Cancelled while waiting to retry", node_id)
        else:
            if attempt > 1:
                logger.info("%s: succeeded on attempt %s of %s" % (node_id, attempt, attempts))
            return out
    if isinstance(last_error, AttemptTimeout):
        raise TimeoutExceeded(node_id, attempts, last_error)
    raise TaskInvocationFailed(node_id, attempts, last_error)

def _accepts_cancel(fn):
    try:
        return "cancel" in inspect.signature(fn).parameters
    except (TypeError, ValueError):
        return False

def _invoke(task, inputs, timeout, scope, node_id):
    """Run one attempt, in the current thread unless it needs a timeout.

    On timeout the attempt's cancel event is set so capabilities watching it
    can release their external process; the attempt result is discarded.
    """
    attempt_cancel = threading.Event()
    kwargs = dict(inputs)
    if _accepts_cancel(task.fn):
        kwargs["cancel"] = attempt_cancel
    with scope.track(attempt_cancel):
        if not timeout:
            out = task.fn(**kwargs)
        else:
            pool = futures.ThreadPoolExecutor(1)
            try:
                out = pool.submit(task.fn, **kwargs).result(timeout=timeout)
            except futures.TimeoutError:
                attempt_cancel.set()
                raise AttemptTimeout("Exceeded wall clock limit of %ss" % timeout)
            finally:
                pool.shutdown(wait=False)
    if scope.is_set():
        raise RunCancelled("Cancelled, discarding results", node_id)
    return out

def _normalize_outputs(task, out):
    """Map a capability result onto the declared outputs, missing outputs being absent.

    A single output task may return its value directly, unless the value is
    itself a dictionary.
    """
    if len(task.outputs) == 1 and not isinstance(out, dict):
        out = {task.outputs[0]: out}
    if out is None:
        out = {}
    if not isinstance(out, dict):
        raise TypeError("%s returned %s, expected a dictionary of outputs %s" %
                        (task.name, type(out).__name__, task.outputs))
    return collections.OrderedDict((k, out.get(k, ABSENT)) for k in task.outputs)
