"""Tests for compression detection and storage lifetime."""

import bz2
import gzip
import io
import lzma
import pickle
import zlib
from concurrent.futures import ThreadPoolExecutor

import pytest

import skpickle
from skpickle import (BytesStorage, CompressedStorage, DecodeError, FileStorage,
                      StorageError, UnsupportedOpcode, open_storage)
from skpickle.storage import ZFILE_HEADER_SIZE
from picklecomp import *


PAYLOAD = {'coef_': [0.5, -1.25, 3.0], 'classes_': ('no', 'yes'), 'n_iter_': 7}


def _zfile(data: bytes, extra_space: bool = False) -> bytes:
    header = b'ZF' + hex(len(data)).encode('ascii').ljust(ZFILE_HEADER_SIZE - 2)
    if extra_space:
        header += b' '
    return header + zlib.compress(data)


COMPRESSORS = {
    'gzip': gzip.compress,
    'zlib': zlib.compress,
    'bz2': bz2.compress,
    'xz': lambda data: lzma.compress(data, format=lzma.FORMAT_XZ),
    'lzma': lambda data: lzma.compress(data, format=lzma.FORMAT_ALONE),
    'zfile': _zfile,
}


class TestDetection:

    @pytest.mark.parametrize('codec', sorted(COMPRESSORS))
    def test_compressed(self, tmp_path, codec):
        path = tmp_path / f'model.pkl.{codec}'
        path.write_bytes(COMPRESSORS[codec](pickle.dumps(PAYLOAD, protocol=2)))

        storage = open_storage(path)
        assert isinstance(storage, CompressedStorage)
        assert storage.codec == codec
        assert skpickle.decode(storage) == PAYLOAD

    def test_zfile_with_extra_space(self, tmp_path):
        path = tmp_path / 'model.pkl.z'
        path.write_bytes(_zfile(pickle.dumps(PAYLOAD, protocol=2), extra_space=True))
        assert skpickle.load(path) == PAYLOAD

    def test_raw(self, tmp_path):
        path = tmp_path / 'model.pkl'
        path.write_bytes(pickle.dumps(PAYLOAD, protocol=4))
        assert isinstance(open_storage(path), FileStorage)
        assert skpickle.load(path) == PAYLOAD

    @pytest.mark.parametrize('protocol', [0, 1])
    def test_text_protocols_are_raw(self, tmp_path, protocol):
        path = tmp_path / 'model.pkl'
        path.write_bytes(pickle.dumps(PAYLOAD, protocol=protocol))
        assert isinstance(open_storage(path), FileStorage)
        assert skpickle.load(path) == PAYLOAD

    def test_corrupt_magic_falls_back_to_raw(self, tmp_path):
        path = tmp_path / 'model.pkl.gz'
        path.write_bytes(b'\x1f\x8b' + b'not really gzip')
        assert isinstance(open_storage(path), FileStorage)
        with pytest.raises(UnsupportedOpcode):
            skpickle.load(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(StorageError):
            open_storage(tmp_path / 'missing.pkl')

    def test_truncated_compressed_stream(self, tmp_path):
        data = gzip.compress(pickle.dumps(list(range(5000)), protocol=2))
        path = tmp_path / 'model.pkl.gz'
        path.write_bytes(data[:len(data) // 2])
        with pytest.raises(DecodeError):
            skpickle.load(path)


class _TrackingStorage(BytesStorage):
    def _open(self):
        self.stream = super()._open()
        return self.stream


class TestLifetime:

    def test_closed_after_success(self):
        storage = _TrackingStorage(pickle.dumps(PAYLOAD, protocol=2))
        skpickle.decode(storage)
        assert storage.stream.closed

    def test_closed_after_failure(self):
        storage = _TrackingStorage(assemble(proto(2), global_('os', 'system'), STOP))
        with pytest.raises(DecodeError):
            skpickle.decode(storage)
        assert storage.stream.closed

    def test_opened_once(self):
        storage = BytesStorage(b'N.')
        storage.open_sequential()
        with pytest.raises(StorageError):
            storage.open_sequential()
        storage.close()

    def test_plain_file_object(self):
        assert skpickle.decode(io.BytesIO(pickle.dumps(PAYLOAD, protocol=2))) == PAYLOAD


def test_concurrent_decodes(tmp_path):
    paths = []
    for i in range(8):
        path = tmp_path / f'model_{i}.pkl.gz'
        path.write_bytes(gzip.compress(pickle.dumps({'index': i, 'data': list(range(i * 100))}, protocol=4)))
        paths.append(path)

    with ThreadPoolExecutor(max_workers=4) as executor:
        results = list(executor.map(skpickle.load, paths))

    for i, result in enumerate(results):
        assert result == {'index': i, 'data': list(range(i * 100))}
