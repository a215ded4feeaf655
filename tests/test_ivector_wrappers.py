import threading

import numpy as np
import pytest

from ivectorkit.ivector_wrappers import check_path_existance, process_parallel_lists


@process_parallel_lists
def _collect(out, lock, item_list, num_thread=1):
    for item in item_list:
        with lock:
            out.append((int(item), threading.get_ident()))


@process_parallel_lists
def _fail(item_list, num_thread=1):
    raise RuntimeError("worker failed")


def test_process_parallel_lists():
    out = []
    _collect(out=out, lock=threading.Lock(), item_list=np.arange(10), num_thread=3)
    assert sorted(item for item, _ in out) == list(range(10))


def test_process_parallel_lists_more_threads_than_items():
    out = []
    _collect(out=out, lock=threading.Lock(), item_list=np.arange(2), num_thread=5)
    assert sorted(item for item, _ in out) == [0, 1]


def test_process_parallel_lists_positional_arguments_run_once():
    out = []
    _collect(out, threading.Lock(), np.arange(4), num_thread=2)
    assert sorted(item for item, _ in out) == [0, 1, 2, 3]


def test_process_parallel_lists_reraises():
    with pytest.raises(RuntimeError):
        _fail(item_list=np.arange(4), num_thread=2)


def test_check_path_existance(tmp_path):
    class Writer(object):
        @check_path_existance
        def write(self, filename):
            with open(filename, "w") as fh:
                fh.write("ok")
            return filename

    filename = str(tmp_path / "a" / "b" / "out.txt")
    assert Writer().write(filename) == filename
    assert open(filename).read() == "ok"
