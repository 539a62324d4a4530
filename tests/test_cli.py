"""Tests for the skpickle command line tool."""

import pickle

import pytest

from skpickle import cli, colors
from picklecomp import *


@pytest.fixture
def model_file(tmp_path):
    path = tmp_path / 'model.pkl'
    path.write_bytes(assemble(
        proto(2),
        newobj('sklearn.linear_model._logistic', 'LogisticRegression'),
        EMPTY_DICT, MARK,
        short_binunicode('C'), binfloat(1.0),
        short_binunicode('penalty'), short_binunicode('l2'),
        short_binunicode('random_state'),
        newobj('numpy.random', '__RandomState_ctor'),
        SETITEMS,
        BUILD,
        STOP,
    ))
    return path


def test_prints_decoded_model(model_file, capsys):
    assert cli.main([str(model_file), '--no-color']) == 0
    out = capsys.readouterr().out
    assert '[+] Decoding complete' in out
    assert 'sklearn.linear_model.LogisticRegression' in out
    assert "'l2'" in out
    assert 'sklearn.linear_model._logistic.LogisticRegression' in out


def test_plain_value(tmp_path, capsys):
    path = tmp_path / 'data.pkl'
    path.write_bytes(pickle.dumps({'a': [1, 2]}, protocol=2))
    assert cli.main([str(path), '--no-color']) == 0
    assert "{'a': [1, 2]}" in capsys.readouterr().out


def test_unknown_type(tmp_path, capsys):
    path = tmp_path / 'evil.pkl'
    path.write_bytes(assemble(proto(2), global_('os', 'system'), STOP))
    assert cli.main([str(path), '--no-color']) == 1
    out = capsys.readouterr().out
    assert "'os.system' is not in the type registry" in out


def test_decode_error(tmp_path, capsys):
    path = tmp_path / 'broken.pkl'
    path.write_bytes(assemble(proto(2), binint1(1)))
    assert cli.main([str(path), '--no-color']) == 1
    assert 'could not decode' in capsys.readouterr().out


def test_missing_file(tmp_path, capsys):
    assert cli.main([str(tmp_path / 'missing.pkl'), '--no-color']) == 1
    assert 'could not decode' in capsys.readouterr().out


def test_trace(tmp_path, capsys):
    path = tmp_path / 'list.pkl'
    path.write_bytes(assemble(proto(2), MARK, binint1(1), binint1(2), LIST, binput(0), STOP))
    assert cli.main([str(path), '--no-color', '--trace']) == 0
    out = capsys.readouterr().out
    for name in ('PROTO', 'MARK', 'BININT1', 'LIST', 'BINPUT'):
        assert name in out
    assert 'metastack' in out
    assert 'memo' in out


def test_recursive_value_is_cut_off():
    value = []
    value.append(value)
    assert '...' in colors.color_by_type(value, strip_comma=True)
