import threading
import time

import pytest

from seqflow.flow import defs, scheduler
from seqflow.flow import run as wrun
from seqflow.flow.checkpoint import CheckpointStore
from seqflow.flow.defs import inp, ref
from seqflow.flow.errors import (CheckpointError, CycleDetected, InvalidWorkflow, MissingRequiredInput,
                                 TaskInvocationFailed, UpstreamFailed)
from seqflow.flow.values import ABSENT


def _fail(**kwargs):
    raise IOError("capability failed")


class TestValidate(object):

    def test_cycles_are_rejected_before_running(self, run_flow, mocker):
        fn = mocker.Mock(return_value=1)
        nodes = [defs.task("a", fn, {"x": ref("c")}),
                 defs.task("b", fn, {"x": ref("a")}),
                 defs.task("c", fn, {"x": ref("b")})]
        with pytest.raises(CycleDetected) as excinfo:
            run_flow(nodes)
        assert excinfo.value.cycle[0] == excinfo.value.cycle[-1]
        assert set(excinfo.value.cycle) == set(["a", "b", "c"])
        assert not fn.called

    def test_unknown_references(self, run_flow):
        with pytest.raises(InvalidWorkflow):
            run_flow([defs.task("a", None, {"x": ref("missing")})])
        with pytest.raises(InvalidWorkflow):
            run_flow([defs.task("a", lambda: 1)], [("out", ref("missing"))])

    def test_duplicate_identifiers(self, run_flow):
        nodes = [defs.task("a", None),
                 defs.conditional("gate", inp("check"), [defs.task("a", None)], {})]
        with pytest.raises(InvalidWorkflow):
            run_flow(nodes)

    def test_find_cycle(self):
        assert scheduler.find_cycle({"a": [], "b": ["a"], "c": ["a", "b"]}) is None
        assert scheduler.find_cycle({"a": ["a"]}) == ["a", "a"]


def test_runs_in_dependency_order(run_flow):
    order = []

    def record(name):
        def fn(**kwargs):
            order.append(name)
            return sum(kwargs.values()) + 1
        return fn

    nodes = [defs.task("merge", record("merge"), {"a": ref("align1"), "b": ref("align2")}),
             defs.task("align1", record("align1"), {"x": inp("x")}),
             defs.task("align2", record("align2"), {"x": inp("x")}),
             defs.task("metrics", record("metrics"), {"bam": ref("merge")})]
    result = run_flow(nodes, [("metrics", ref("metrics"))], {"x": 1})
    assert result.ok
    assert result.outputs["metrics"] == 6
    assert order.index("merge") > max(order.index("align1"), order.index("align2"))
    assert order[-1] == "metrics"


def test_independent_nodes_run_concurrently(run_flow):
    events = {"a": threading.Event(), "b": threading.Event()}

    def meet(me, other):
        events[me].set()
        return events[other].wait(5)

    nodes = [defs.task("a", meet, {"me": "a", "other": "b"}),
             defs.task("b", meet, {"me": "b", "other": "a"})]
    result = run_flow(nodes, [("a", ref("a")), ("b", ref("b"))])
    assert result.outputs == {"a": True, "b": True}


def test_absent_values_propagate(run_flow, mocker):
    fn = mocker.Mock(return_value="x")
    nodes = [defs.task("a", fn, {"db": inp("haplotype_db")}),
             defs.task("b", fn, {"x": ref("a")})]
    result = run_flow(nodes, [("b", ref("b"))])
    assert result.ok
    assert result.outputs["b"] is ABSENT
    assert not fn.called


def test_missing_required_input_fails(run_flow):
    nodes = [defs.task("verifybamid", lambda model: 1, {"model": inp("model")}, required=["model"])]
    result = run_flow(nodes)
    assert result.status == wrun.FAILED
    assert isinstance(result.failures["verifybamid"], MissingRequiredInput)


class TestFailurePolicy(object):

    def _nodes(self, later):
        return [defs.task("align", _fail, attempts=1),
                defs.task("merge", lambda bams: bams, {"bams": ref("align")}, required=["bams"]),
                defs.task("report", lambda bams: bams, {"bams": ref("align")}),
                defs.task("slow", lambda: time.sleep(0.2)),
                defs.task("later", later, {"x": ref("slow")})]

    def test_no_new_nodes_start_after_a_failure(self, run_flow, mocker):
        later = mocker.Mock()
        result = run_flow(self._nodes(later))
        assert result.status == wrun.FAILED
        assert isinstance(result.failures["align"], TaskInvocationFailed)
        assert not later.called
        assert "slow" in result.succeeded

    def test_dependents_resolve_by_requirement(self, run_flow, mocker):
        nodes = self._nodes(mocker.Mock())
        run = wrun.WorkflowRun(defs.workflow("test", nodes, []), {})
        assert scheduler.Scheduler(run).execute() == wrun.FAILED
        assert run.state("merge").status == wrun.FAILED
        assert isinstance(run.state("merge").error, UpstreamFailed)
        assert run.state("report").status == wrun.ABSENT_STATUS
        assert run.state("later").status == wrun.SKIPPED
        assert all(s.status in wrun.TERMINAL for s in run.states.values())


def test_retries_until_success(run_flow):
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise IOError("preempted")
        return "a.bam"

    result = run_flow([defs.task("align", flaky, attempts=3)], [("bam", ref("align"))])
    assert result.ok
    assert result.outputs["bam"] == "a.bam"
    assert len(calls) == 3


def test_retry_budget_from_configuration(run_flow, mocker):
    fn = mocker.Mock(side_effect=IOError("preempted"))
    config = {"resources": {"default": {"attempts": 2}, "align": {"attempts": 3}}}
    result = run_flow([defs.task("align", fn), defs.task("other", fn, resources="merge")], config=config)
    assert result.status == wrun.FAILED
    assert result.failures["align"].attempts == 3
    assert fn.call_count >= 3


def test_cancellation_stops_running_and_pending_nodes(mocker):
    later = mocker.Mock()

    def slow(cancel):
        cancel.wait(10)
        return "late"

    nodes = [defs.task("align", slow), defs.task("merge", later, {"bam": ref("align")})]
    run = wrun.WorkflowRun(defs.workflow("test", nodes, []), {})
    threading.Timer(0.1, run.cancel).start()
    start = time.time()
    assert scheduler.Scheduler(run).execute() == wrun.CANCELLED
    assert time.time() - start < 5
    assert run.state("align").status == wrun.CANCELLED
    assert run.state("merge").status == wrun.CANCELLED
    assert not later.called


def test_listeners_see_every_terminal_node(run_flow):
    seen = []
    nodes = [defs.task("a", lambda: 1), defs.task("b", lambda x: x, {"x": ref("a")})]
    run_flow(nodes, listeners=[lambda run, state: seen.append((state.node_id, state.status))])
    assert seen == [("a", wrun.SUCCEEDED), ("b", wrun.SUCCEEDED)]


def test_resumes_from_checkpoints(run_flow, tmpdir, mocker):
    store = CheckpointStore(str(tmpdir))
    align = mocker.Mock(return_value="a.bam")
    merge = mocker.Mock(side_effect=[IOError("preempted"), "merged.bam"])
    nodes = [defs.task("align", align), defs.task("merge", merge, {"bams": ref("align")}, attempts=1)]
    first = run_flow(nodes, [("bam", ref("merge"))], run_id="S1", store=store)
    assert first.status == wrun.FAILED
    second = run_flow(nodes, [("bam", ref("merge"))], run_id="S1", store=store)
    assert second.ok
    assert second.outputs["bam"] == "merged.bam"
    assert align.call_count == 1
    assert merge.call_count == 2


def test_checkpoint_dir_from_configuration(run_flow, tmpdir):
    config = {"checkpoint_dir": str(tmpdir)}
    run_flow([defs.task("align", lambda: "a.bam")], run_id="S1", config=config)
    assert tmpdir.join("S1", "align.yaml").check()


def _in_thread(fn):
    """Run fn in a thread, returning its result or None if it is still running after 5s.
    """
    out = []
    t = threading.Thread(target=lambda: out.append(fn()))
    t.daemon = True
    t.start()
    t.join(5)
    return out[0] if out else None


class TestCompletionSideEffects(object):

    def _nodes(self, mocker):
        return [defs.task("a", mocker.Mock(return_value="a.bam")),
                defs.task("b", mocker.Mock(return_value="b.bam"), {"x": ref("a")}, required=["x"])]

    def test_failing_listener_does_not_stop_the_run(self, run_flow, mocker):
        def broken(run, state):
            raise ValueError("listener failed")

        result = _in_thread(lambda: run_flow(self._nodes(mocker), [("b", ref("b"))], listeners=[broken]))
        assert result is not None
        assert result.ok
        assert result.outputs["b"] == "b.bam"

    def test_unwritable_checkpoint_fails_the_node(self, run_flow, tmpdir, mocker):
        tmpdir.join("S1", "a.yaml.tmp").ensure(dir=True)
        nodes = self._nodes(mocker)
        result = _in_thread(lambda: run_flow(nodes, run_id="S1", store=CheckpointStore(str(tmpdir))))
        assert result is not None
        assert result.status == wrun.FAILED
        assert isinstance(result.failures["a"], CheckpointError)
        assert isinstance(result.failures["b"], UpstreamFailed)
        assert not nodes[1].fn.called

    def test_unreadable_checkpoint_fails_the_node(self, run_flow, tmpdir, mocker):
        tmpdir.join("S1", "a.yaml").write("outputs: [unclosed", ensure=True)
        nodes = self._nodes(mocker)
        result = _in_thread(lambda: run_flow(nodes, run_id="S1", store=CheckpointStore(str(tmpdir))))
        assert result is not None
        assert result.status == wrun.FAILED
        assert isinstance(result.failures["a"], CheckpointError)
        assert not nodes[0].fn.called


def test_cancellation_reaches_scatter_elements_after_a_failure():
    signalled = []

    def align_unit(item, cancel):
        if item == 1:
            time.sleep(0.05)
            raise ValueError("corrupt read unit")
        signalled.append(cancel.wait(4))
        return "unit0.bam"

    t = defs.task("align_unit", align_unit, outputs=["bam"], attempts=1)
    nodes = [defs.scatter("align", t, inp("read_units"), fail_fast=True, force_cancel=False, concurrency=2)]
    run = wrun.WorkflowRun(defs.workflow("test", nodes, []), {"read_units": [0, 1]})
    threading.Timer(0.3, run.cancel).start()
    start = time.time()
    assert scheduler.Scheduler(run).execute() == wrun.CANCELLED
    assert time.time() - start < 3
    assert signalled == [True]
    assert run.state("align[0]").status == wrun.CANCELLED
