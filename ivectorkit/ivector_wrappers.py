# -*- coding: utf-8 -*-
#
# This file is part of IVECTORKIT.
#
# IVECTORKIT is a python package for i-vector extraction and training.
#
# IVECTORKIT is free software: you can redistribute it and/or modify
# it under the terms of the GNU Lesser General Public License as
# published by the Free Software Foundation, either version 3 of the License,
# or (at your option) any later version.
#
# IVECTORKIT is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Lesser General Public License for more details.
#
# You should have received a copy of the GNU Lesser General Public License
# along with IVECTORKIT.  If not, see <http://www.gnu.org/licenses/>.

"""
:mod:`ivector_wrappers` holds the decorators shared by the package: output
directory creation for writers and splitting of a loop over several threads.
"""
import functools
import logging
import os
import threading
import numpy
from ivectorkit import PARALLEL_MODULE

__license__ = "LGPL"
__status__ = "Production"
__docformat__ = 'reStructuredText'


def check_path_existance(func):
    """Decorator for writers called as ``obj.write(filename, ...)``: the
    directory part of ``filename`` is created before writing when missing.

    :param func: method to decorate
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        dir_name = os.path.dirname(args[1])
        if dir_name != '' and not os.path.exists(dir_name):
            os.makedirs(dir_name, exist_ok=True)
        return func(*args, **kwargs)
    return wrapper


def process_parallel_lists(func):
    """
    Decorator running a loop over one or several lists in ``num_thread``
    threads.

    - every argument must be passed by keyword, otherwise the function runs
      once in the calling thread
    - keyword arguments ending with "_list" or "_indices" are split into
      ``num_thread`` contiguous chunks, one chunk per thread
    - the other arguments are shared by all threads: shared accumulators
      lock their own state, or each thread writes to its own slice of them
    - an exception raised in a thread is raised again once all threads
      have joined

    :param func: function to decorate
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        if len(args) > 0:
            logging.warning("Some arguments of %s are not named, computation is not parallelized", func.__name__)

        num_thread = kwargs.get("num_thread", 1)

        if PARALLEL_MODULE == 'threading' and num_thread > 1 and len(args) == 0:
            # Never start more threads than there are elements in the lists
            list_length = numpy.inf
            for k, v in kwargs.items():
                if k.endswith("_list") or k.endswith("_indices"):
                    list_length = min(list_length, len(v))
            num_thread = int(min(num_thread, list_length))

            parallel_kwargs = [dict(kwargs) for _ in range(num_thread)]
            for k, v in kwargs.items():
                if k.endswith("_list") or k.endswith("_indices"):
                    sub_lists = numpy.array_split(numpy.asarray(v), num_thread)
                    for ii in range(num_thread):
                        parallel_kwargs[ii][k] = sub_lists[ii]
                elif k == "num_thread":
                    for ii in range(num_thread):
                        parallel_kwargs[ii][k] = 1

            errors = []

            def target(kw):
                try:
                    func(**kw)
                except Exception as e:  # re-raised in the calling thread
                    errors.append(e)

            jobs = []
            for idx in range(num_thread):
                p = threading.Thread(target=target, args=(parallel_kwargs[idx],))
                jobs.append(p)
                p.start()
            for p in jobs:
                p.join()
            if errors:
                raise errors[0]
        else:
            logging.debug("No parallel processing for %s", func.__name__)
            func(*args, **kwargs)

    return wrapper
