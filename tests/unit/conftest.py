"""Pytest fixtures shared by the unit tests"""
import pytest

from seqflow.flow import defs, scheduler


class DummyCM(object):
    """Explicit structure of a context manager.
    Allows to monkey-patch context managers defined through
    @contextmanager decorator.

    value: holds whatever the context manager should yield.
    """
    value = None

    def __init__(self, *args, **kwargs):
        pass

    def __enter__(self):
        return self.value

    def __exit__(self, *args, **kwargs):
        pass


class DummyTxTmpdir(DummyCM):
    value = 'tx_tmp'


class DummyFileTransaction(DummyCM):
    """Yields the transactional name of every file passed, like file_transaction.
    """
    def __init__(self, *args, **kwargs):
        files = [x for x in args if not isinstance(x, dict)]
        tx_files = ["tx/%s" % x.split("/")[-1] for x in files]
        self.value = tx_files[0] if len(tx_files) == 1 else tuple(tx_files)


@pytest.fixture
def dummy_tx():
    return {"file_transaction": DummyFileTransaction, "tx_tmpdir": DummyTxTmpdir}


@pytest.fixture
def run_flow():
    """Run a workflow built from nodes and (name, binding) outputs.
    """
    def _run(nodes, outputs=None, inputs=None, **kwargs):
        outputs = [defs.output(k, v) for k, v in (outputs or [])]
        wf = defs.workflow("test", nodes, outputs)
        return scheduler.run_workflow(wf, inputs or {}, **kwargs)
    return _run
