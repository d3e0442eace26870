import pytest

from seqflow.distributed import transaction
from seqflow.distributed.transaction import _flatten_plus_safe
from seqflow.distributed.transaction import _get_base_tmpdir
from seqflow.distributed.transaction import _move_file_with_sizecheck
from seqflow.distributed.transaction import file_transaction
from seqflow.distributed.transaction import tx_tmpdir


CWD = 'TEST_CWD'
CONFIG = {'a': 1}
TMPDIR = 'TEST_TMPDIR'


@pytest.fixture
def mock_io(mocker):
    mocker.patch('seqflow.distributed.transaction.open')
    mocker.patch('seqflow.distributed.transaction.os.path.isdir')
    mocker.patch('seqflow.distributed.transaction.os.path.exists')
    mocker.patch('seqflow.distributed.transaction.shutil')
    mocker.patch('seqflow.distributed.transaction.tempfile.mkdtemp', return_value=TMPDIR)
    mocker.patch('seqflow.distributed.transaction.utils')
    mocker.patch('seqflow.distributed.transaction.os.getcwd', return_value=CWD)
    transaction.utils.flatten.side_effect = lambda xs: [x for x in xs]
    transaction.utils.file_plus_index.side_effect = lambda x: [x]
    yield None


class TestTxTmpdir(object):

    def test_gets_base_tmpdir_name_from_config_or_cwd(self, mock_io, mocker):
        mocker.patch('seqflow.distributed.transaction._get_base_tmpdir')
        with tx_tmpdir(CONFIG):
            pass
        transaction._get_base_tmpdir.assert_called_once_with(CONFIG, CWD)
        base_tmpdir = transaction._get_base_tmpdir.return_value
        transaction.utils.get_abspath.assert_called_once_with(base_tmpdir)

    def test_makes_unique_tmp_dir(self, mock_io):
        with tx_tmpdir(None) as tmp_dir:
            assert tmp_dir == TMPDIR
        transaction.tempfile.mkdtemp.assert_called_once_with(
            dir=transaction.utils.get_abspath.return_value)

    def test_removes_tmp_dir(self, mock_io):
        with tx_tmpdir(remove=True):
            pass
        transaction.utils.remove_safe.assert_called_once_with(TMPDIR)

    def test_keeps_tmp_dir_if_remove_is_false(self, mock_io):
        with tx_tmpdir(remove=False):
            pass
        assert not transaction.utils.remove_safe.called

    def test_create_tmpdir_in_a_specified_base_dir(self, mock_io):
        with tx_tmpdir(base_dir='somedir'):
            pass
        transaction.utils.get_abspath.assert_called_once_with('somedir/seqflowtx')


class TestGetConfigTmpdir(object):

    def test_from_resources(self):
        config = {'resources': {'tmp': {'dir': 'TEST_TMP_DIR'}}}
        assert _get_base_tmpdir(config, CWD) == 'TEST_TMP_DIR'

    def test_without_config(self):
        assert _get_base_tmpdir(None, CWD) == '%s/seqflowtx' % CWD
        assert _get_base_tmpdir({}, CWD) == '%s/seqflowtx' % CWD


class TestFlattenPlusSafe(object):

    @pytest.mark.parametrize(('args', 'expected_tx', 'expected_safe'), [
        (('/path/to/somefile',), ['tmp/somefile'], ['/path/to/somefile']),
        ((CONFIG, ['/path/to/somefile']), ['tmp/somefile'], ['/path/to/somefile']),
        ((CONFIG, '/path/to/somefile', '/otherpath/to/otherfile'),
         ['tmp/somefile', 'tmp/otherfile'], ['/path/to/somefile', '/otherpath/to/otherfile']),
    ])
    def test_creates_tx_names_in_tmp_dir(self, mocker, args, expected_tx, expected_safe):
        tx = mocker.patch('seqflow.distributed.transaction.tx_tmpdir')
        tx.return_value.__enter__.return_value = 'tmp'
        with _flatten_plus_safe(args) as (result_tx, result_safe):
            assert result_tx == expected_tx
            assert result_safe == expected_safe
        tx.assert_called_once_with(args[0] if isinstance(args[0], dict) else None)


class TestMoveWithSizeCheck(object):

    def test_moves_files(self, mock_io):
        _move_file_with_sizecheck('foo', 'bar')
        transaction.shutil.move.assert_called_once_with('foo', 'bar')

    def test_fails_if_sizes_arent_equal(self, mock_io):
        transaction.utils.get_size.side_effect = lambda x: x
        with pytest.raises(AssertionError):
            _move_file_with_sizecheck('foo', 'bar')
        assert not transaction.utils.remove_safe.called

    def test_creates_flag_file(self, mock_io):
        _move_file_with_sizecheck('foo', 'bar')
        transaction.open.assert_called_once_with('bar.seqflowtmp', 'wb')
        transaction.utils.remove_safe.assert_called_once_with('bar.seqflowtmp')


class TestFileTransaction(object):

    def test_yields_path_to_tmpfile(self, mock_io):
        with file_transaction(CONFIG, '/some/path') as tmp_path:
            assert tmp_path == '%s/path' % TMPDIR

    def test_yields_tuple_of_paths_to_tmpfiles(self, mock_io):
        with file_transaction(CONFIG, '/some/path', '/some/otherpath') as tmp_path:
            assert tmp_path == ('%s/path' % TMPDIR, '%s/otherpath' % TMPDIR)

    def test_moves_tmp_file_to_original_location(self, mock_io):
        transaction.os.path.exists.return_value = True
        transaction.os.path.isdir.return_value = False
        with file_transaction(CONFIG, '/some/path') as tmp_path:
            pass
        transaction.shutil.move.assert_called_once_with(tmp_path, '/some/path')

    def test_doesnt_move_missing_tmp_files(self, mock_io):
        transaction.os.path.exists.return_value = False
        with file_transaction(CONFIG, '/some/path'):
            pass
        assert not transaction.shutil.move.called

    def test_moves_indexes_with_files(self, tmpdir):
        out_file = str(tmpdir.join("final", "S1.bam"))
        with file_transaction({"resources": {"tmp": {"dir": str(tmpdir.join("tx"))}}}, out_file) as tx_out:
            with open(tx_out, "w") as out_handle:
                out_handle.write("BAM")
            with open(tx_out + ".bai", "w") as out_handle:
                out_handle.write("BAI")
        assert tmpdir.join("final", "S1.bam").read() == "BAM"
        assert tmpdir.join("final", "S1.bam.bai").read() == "BAI"
        assert not tmpdir.join("final", "S1.bam.seqflowtmp").check()
        assert tmpdir.join("tx").listdir() == []
