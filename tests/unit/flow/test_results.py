import pytest

from seqflow.flow import defs, results, scheduler
from seqflow.flow import run as wrun
from seqflow.flow.defs import inp, ref
from seqflow.flow.errors import MissingRequiredOutput, TaskInvocationFailed
from seqflow.flow.values import ABSENT


def _nodes():
    return [defs.task("merge", lambda bams: "merged.bam", {"bams": inp("bams")}),
            defs.task("verifybamid", lambda model: 0.01, {"model": inp("model")})]


def test_optional_outputs_stay_absent(run_flow):
    result = run_flow(_nodes(), [("bam", ref("merge")), ("estimate", ref("verifybamid"))],
                      {"bams": ["a.bam"]})
    assert result.ok
    assert result.outputs == {"bam": "merged.bam", "estimate": ABSENT}
    assert result.check() is result


def test_required_outputs_must_be_present():
    wf = defs.workflow("test", _nodes(), [defs.output("bam", ref("merge"), required=True),
                                          defs.output("estimate", ref("verifybamid"), required=True)])
    out = scheduler.run_workflow(wf, {"bams": ["a.bam"]})
    assert out.status == wrun.FAILED
    assert isinstance(out.failures["estimate"], MissingRequiredOutput)
    with pytest.raises(MissingRequiredOutput):
        out.check()


def test_failed_runs_report_partial_results(run_flow):
    def fail(model):
        raise IOError("verifybamid crashed")

    nodes = [defs.task("merge", lambda bams: "merged.bam", {"bams": inp("bams")}),
             defs.task("verifybamid", fail, {"model": inp("model")}, attempts=1),
             defs.task("summary", lambda x: x, {"x": ref("verifybamid")})]
    result = run_flow(nodes, [("bam", ref("merge")), ("summary", ref("summary"))],
                      {"bams": ["a.bam"], "model": "1000g"})
    assert result.status == wrun.FAILED
    assert "merge" in result.succeeded
    assert list(result.failures.keys()) == ["verifybamid"]
    assert isinstance(result.failures["verifybamid"], TaskInvocationFailed)
    assert result.outputs["summary"] is ABSENT
    with pytest.raises(TaskInvocationFailed):
        result.check()


def test_check_without_recorded_failures():
    result = results.RunResult("S1", wrun.CANCELLED, {}, [], {})
    assert not result.ok
    with pytest.raises(RuntimeError):
        result.check()
