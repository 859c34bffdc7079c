"""Data input of the EM trainer.

A `pyspark.RDD` of vectors is used as is: the trainer only calls `cache`,
`takeSample`, `aggregate`, `map`, `first` and `context.broadcast`.

Anything else is converted to an array with shape (N, D). The rows are split
into disjoint, contiguous partitions that are folded in parallel with joblib
(threads, numpy releases the GIL). The workers share no mutable state, the
partial results are returned in partition order.

>>> x = as_array([1., 2., 3., 4., 5.])
>>> x.shape
(5, 1)
>>> partitions = split(x, num_partitions=2)
>>> [len(p) for p in partitions]
[3, 2]
>>> [float(s) for s in map_partitions(np.sum, partitions, n_jobs=2)]
[6.0, 9.0]
"""
import sys

import numpy as np
from joblib import Parallel, delayed, effective_n_jobs
from sklearn.utils import check_random_state

__all__ = [
    'as_array',
    'is_rdd',
    'map_partitions',
    'split',
    'take_sample',
]


def is_rdd(data):
    """True for a `pyspark.RDD`. Does not import pyspark.

    >>> is_rdd(np.zeros((2, 3)))
    False
    """
    pyspark = sys.modules.get('pyspark')
    return pyspark is not None and isinstance(data, pyspark.RDD)


def as_array(data):
    """Real float64 array with shape (N, D). 1-D input are N scalars."""
    data = np.asarray(data)
    assert np.isrealobj(data), data.dtype
    if data.ndim == 1:
        data = data[:, None]
    assert data.ndim == 2, data.shape
    return data.astype(np.float64)


def split(x, num_partitions=None, n_jobs=None):
    """Split the rows of `x` into disjoint, contiguous partitions.

    Args:
        x: Shape (N, ...)
        num_partitions: Defaults to the number of jobs. Limited to N, but at
            least one (possibly empty) partition is returned.
        n_jobs: As in joblib.

    Returns:
        List of arrays, in row order.
    """
    if num_partitions is None:
        num_partitions = effective_n_jobs(n_jobs)
    assert num_partitions > 0, num_partitions
    num_partitions = max(1, min(num_partitions, len(x)))
    return np.array_split(x, num_partitions)


def map_partitions(function, partitions, n_jobs=None):
    """Apply `function` to every partition, results in partition order."""
    if len(partitions) <= 1 or effective_n_jobs(n_jobs) == 1:
        return [function(partition) for partition in partitions]
    return Parallel(n_jobs=n_jobs, prefer='threads')(
        delayed(function)(partition) for partition in partitions
    )


def take_sample(x, num, seed=None):
    """`num` rows of `x`, drawn with replacement in a single random draw.

    >>> x = np.arange(5)
    >>> a = take_sample(x, 20, seed=3)
    >>> a.shape, bool(np.all(a == take_sample(x, 20, seed=3)))
    ((20,), True)
    """
    if len(x) == 0:
        raise ValueError('Cannot sample from an empty dataset.')
    index = check_random_state(seed).randint(len(x), size=num)
    return x[index]
