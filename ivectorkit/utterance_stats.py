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
:mod:`utterance_stats` provides the sufficient statistics of one utterance.
"""
import numpy
from ivectorkit import STAT_TYPE

__license__ = "LGPL"
__status__ = "Production"
__docformat__ = 'reStructuredText'


class IvectorExtractorUtteranceStats(object):
    """
    Sufficient statistics for estimating the i-vector of one utterance.
    Second-order statistics are only needed to update the variances of the
    extractor, not to estimate the i-vector.

    :attr gamma: zero-order statistics (summed posteriors), dimension [I]
    :attr X: first-order statistics, dimension [I, D]
    :attr S: second-order statistics, dimension [I, D, D], or None
    """

    def __init__(self, num_gauss, feat_dim, need_2nd_order_stats=False):
        self.gamma = numpy.zeros(num_gauss, dtype=STAT_TYPE)
        self.X = numpy.zeros((num_gauss, feat_dim), dtype=STAT_TYPE)
        self.S = None
        if need_2nd_order_stats:
            self.S = numpy.zeros((num_gauss, feat_dim, feat_dim), dtype=STAT_TYPE)

    def __repr__(self):
        ch = '-' * 30 + '\n'
        ch += 'gamma: ' + self.gamma.__repr__() + '\n'
        ch += 'X: ' + self.X.__repr__() + '\n'
        ch += 'S: ' + ('None' if self.S is None else 'shape {}'.format(self.S.shape)) + '\n'
        ch += '-' * 30 + '\n'
        return ch

    @property
    def num_gauss(self):
        return self.gamma.shape[0]

    @property
    def feat_dim(self):
        return self.X.shape[1]

    def has_2nd_order_stats(self):
        return self.S is not None

    def scale(self, scale):
        """Multiply all statistics by a factor, used to apply the acoustic weight

        :param scale: the scaling factor
        """
        self.gamma *= scale
        self.X *= scale
        if self.S is not None:
            self.S *= scale

    def check_dims(self, num_gauss, feat_dim):
        """Raise a ValueError if the statistics do not match a model

        :param num_gauss: number of Gaussians of the model
        :param feat_dim: dimension of the features of the model
        """
        if self.gamma.shape != (num_gauss,) or self.X.shape != (num_gauss, feat_dim):
            raise ValueError("Utterance statistics have dimension I={}, D={}, expected I={}, D={}".format(
                self.gamma.shape[0], self.X.shape[-1], num_gauss, feat_dim))
        if self.S is not None and self.S.shape != (num_gauss, feat_dim, feat_dim):
            raise ValueError("Second-order statistics have shape {}, expected {}".format(
                self.S.shape, (num_gauss, feat_dim, feat_dim)))
