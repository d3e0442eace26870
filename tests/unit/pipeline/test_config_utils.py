import mock
import pytest
import yaml

from seqflow.pipeline import config_utils


@pytest.fixture
def config_file(tmpdir, monkeypatch):
    monkeypatch.setenv("SEQFLOW_DATA", "/data")
    config = {"resources": {"default": {"attempts": 5},
                            "Picard": {"cmd": "$SEQFLOW_DATA/bin/picard", "jvm_opts": ["-Xmx8g"]},
                            "align_unit": {"timeout": 3600}},
              "parallel": {"max_workers": 4},
              "checkpoint_dir": "$SEQFLOW_DATA/checkpoints"}
    out_file = tmpdir.join("seqflow.yaml")
    out_file.write(yaml.safe_dump(config))
    return str(out_file)


def test_load_config_expands_and_fills_defaults(config_file):
    config = config_utils.load_config(config_file)
    assert config["checkpoint_dir"] == "/data/checkpoints"
    assert config["resources"]["picard"]["cmd"] == "/data/bin/picard"
    assert config["resources"]["default"] == {"attempts": 5, "timeout": None, "retry_wait": 0}
    assert config["parallel"] == {"max_workers": 4, "fail_fast": False, "force_cancel": False}
    assert config["algorithm"]["size_threshold"] == 110.0


def test_load_empty_config(tmpdir):
    empty = tmpdir.join("empty.yaml")
    empty.write("")
    assert config_utils.load_config(str(empty)) == config_utils.with_defaults()


def test_with_defaults_does_not_share_state():
    config = config_utils.with_defaults({"parallel": {"fail_fast": True}})
    config["resources"]["default"]["attempts"] = 10
    assert config["parallel"]["fail_fast"] is True
    assert config_utils.DEFAULTS["resources"]["default"]["attempts"] == 3


def test_expand_path(monkeypatch):
    monkeypatch.setenv("HOME", "/home/seqflow")
    assert config_utils.expand_path("~/ref/hg38.fa") == "/home/seqflow/ref/hg38.fa"
    assert config_utils.expand_path(5) == 5


def test_get_resources_layers_over_default(config_file):
    config = config_utils.load_config(config_file)
    assert config_utils.get_resources("align_unit", config) == {"attempts": 5, "timeout": 3600,
                                                                 "retry_wait": 0}
    assert config_utils.get_resources("merge", config)["timeout"] is None
    assert config_utils.get_resources("merge", {}) == {}


def test_get_program(mocker):
    which = mocker.patch("seqflow.pipeline.config_utils.utils.which", side_effect=lambda x: x)
    config = {"resources": {"picard": {"cmd": "/opt/picard"}, "bwa": "/opt/bwa"}}
    assert config_utils.get_program("picard", config) == "/opt/picard"
    assert config_utils.get_program("bwa", config) == "/opt/bwa"
    assert config_utils.get_program("samtools", config) == "samtools"
    which.assert_called_with("samtools")


def test_get_program_not_found(mocker):
    mocker.patch("seqflow.pipeline.config_utils.utils.which", return_value=None)
    with pytest.raises(config_utils.CmdNotFound):
        config_utils.get_program("verifybamid2", {})


def test_get_jvm_opts():
    config = {"resources": {"picard": {"jvm_opts": ["-Xmx8g"]}}}
    assert config_utils.get_jvm_opts("picard", config) == ["-Xmx8g"]
    assert config_utils.get_jvm_opts("gatk", config) == ["-Xms750m", "-Xmx4g"]
    assert config_utils.get_jvm_opts("gatk", config, default=mock.sentinel.opts) == mock.sentinel.opts
