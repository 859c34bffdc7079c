import numpy as np


class _ProbabilisticModel:
    def __getattr__(self, name):
        """
        >>> from pb_gmm.distribution import Gaussian
        >>> model = Gaussian(mean=np.zeros(2), covariance=np.eye(2))
        >>> model.covariances
        Traceback (most recent call last):
        ...
        AttributeError: 'Gaussian' object has no attribute 'covariances'.
        Close matches: ['covariance']
        """

        import difflib
        similar = difflib.get_close_matches(name, self.__dataclass_fields__.keys())
        if len(similar) == 0:
            similar = list(self.__dataclass_fields__.keys())

        raise AttributeError(
            f'{self.__class__.__name__!r} object has no attribute {name!r}.\n'
            f'Close matches: {similar}'
        )


def _readonly_copy(array, ndim, dtype=np.float64):
    """Copy `array` into a new read-only array with exactly `ndim` dims.

    >>> a = _readonly_copy([1, 2], 1)
    >>> a.flags.writeable, a.dtype
    (False, dtype('float64'))
    """
    array = np.array(array, dtype=dtype, copy=True)
    assert array.ndim == ndim, (array.shape, ndim)
    array.flags.writeable = False
    return array
