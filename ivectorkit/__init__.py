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
IVECTORKIT: estimation of i-vectors and training of i-vector extractors
on top of a full-covariance Universal Background Model.
"""

import numpy


PARALLEL_MODULE = 'threading'  # the accumulators are shared between threads, processes are not supported
STAT_TYPE = numpy.float64  # float32 is not accurate enough for the accumulators

# Import classes
from ivectorkit.mixture import Mixture
from ivectorkit.utterance_stats import IvectorExtractorUtteranceStats
from ivectorkit.options import IvectorEstimationOptions
from ivectorkit.options import IvectorExtractorOptions
from ivectorkit.options import IvectorStatsOptions
from ivectorkit.options import IvectorExtractorEstimationOptions
from ivectorkit.options import read_options
from ivectorkit.extractor import IvectorExtractor
from ivectorkit.ivector_stats import IvectorStats

from ivectorkit.sv_utils import invert_with_flooring
from ivectorkit.stiefel import solve_quadratic_matrix_problem_on_stiefel_manifold


__license__ = "LGPL"
__status__ = "Production"
__docformat__ = 'reStructuredText'
__version__ = "0.1.0"
