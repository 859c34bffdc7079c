from dataclasses import dataclass, field

import numpy as np
from pb_gmm.distribution.utils import _ProbabilisticModel

__all__ = [
    'Gaussian',
    'GaussianTrainer',
]


def _readonly(array):
    array.flags.writeable = False
    return array


@dataclass(frozen=True)
class Gaussian(_ProbabilisticModel):
    """Multivariate normal distribution, optionally batched.

    The covariance is decomposed once on construction. Singular covariances
    use the pseudo-inverse and the pseudo-determinant, as
    `scipy.stats.multivariate_normal(..., allow_singular=True)` does.
    Eigenvalues below `eps * max(abs(eigenvalue)) * D` are treated as zero.
    Unlike scipy, the normalization uses D instead of the rank and points off
    the support keep a positive density. No regularization is applied. A zero
    covariance yields the constant density (2 pi)^(-D/2).

    All arrays are stored read-only, so an instance can be shared between
    workers.

    >>> g = Gaussian(mean=np.zeros(2), covariance=np.eye(2))
    >>> float(np.round(g.pdf(np.zeros(2)), 6))
    0.159155
    >>> g.mean.flags.writeable
    False
    >>> g = Gaussian(mean=np.zeros((3, 2)), covariance=np.tile(np.eye(2), (3, 1, 1)))
    >>> g.log_pdf(np.ones((5, 2))).shape
    (5, 3)
    """
    mean: np.array  # (..., D)
    covariance: np.array  # (..., D, D)
    precision_root: np.array = field(init=False, repr=False)  # (..., D, D)
    log_normalizer: np.array = field(init=False, repr=False)  # (...,)

    def __post_init__(self):
        mean = np.array(self.mean, dtype=np.float64)
        covariance = np.array(self.covariance, dtype=np.float64)
        D = mean.shape[-1]
        assert covariance.shape == (*mean.shape, D), (mean.shape, covariance.shape)

        eigenvals, eigenvecs = np.linalg.eigh(covariance)
        tolerance = (
            np.finfo(eigenvals.dtype).eps
            * np.amax(np.abs(eigenvals), axis=-1, keepdims=True)
            * D
        )
        valid = eigenvals > tolerance
        log_pseudo_det = np.sum(
            np.log(np.where(valid, eigenvals, 1.)), axis=-1
        )
        inv_sqrt = np.where(
            valid, 1 / np.sqrt(np.where(valid, eigenvals, 1.)), 0.
        )
        precision_root = inv_sqrt[..., :, None] * np.swapaxes(eigenvecs, -1, -2)
        log_normalizer = -1 / 2 * (D * np.log(2 * np.pi) + log_pseudo_det)

        object.__setattr__(self, 'mean', _readonly(mean))
        object.__setattr__(self, 'covariance', _readonly(covariance))
        object.__setattr__(self, 'precision_root', _readonly(precision_root))
        object.__setattr__(
            self, 'log_normalizer', _readonly(np.asarray(log_normalizer))
        )

    @property
    def batch_shape(self):
        return self.mean.shape[:-1]

    def log_pdf(self, y):
        """

        Args:
            y: Shape (..., D)

        Returns:
            Shape (..., *batch_shape)

        """
        y = np.asarray(y)
        index = (Ellipsis,) + (None,) * len(self.batch_shape) + (slice(None),)
        difference = y[index] - self.mean
        white_x = np.einsum(
            '...dD,...D->...d',
            self.precision_root,
            difference
        )
        return (
            self.log_normalizer
            - 1 / 2 * np.einsum('...d,...d->...', white_x, white_x)
        )

    def pdf(self, y):
        return np.exp(self.log_pdf(y))


class GaussianTrainer:
    def fit(self, y):
        """Mean and biased, diagonal covariance of the observations.

        Args:
            y: Shape (..., N, D)

        Returns:
            `Gaussian` with batch shape (...). The diagonal covariance is
            returned as a (..., D, D) matrix.

        >>> y = np.array([[0., 1.], [2., 5.]])
        >>> GaussianTrainer().fit(y).covariance
        array([[1., 0.],
               [0., 4.]])
        """
        y = np.asarray(y)
        assert np.isrealobj(y), y.dtype
        assert y.ndim >= 2, y.shape
        return self._fit(y)

    def _fit(self, y):
        mean = np.mean(y, axis=-2)
        # Biased estimate, i.e. divided by N.
        difference = y - mean[..., None, :]
        variance = np.einsum("...nd,...nd->...d", difference, difference)
        variance = variance / y.shape[-2]
        covariance = np.einsum('...d,dD->...dD', variance, np.eye(y.shape[-1]))
        return Gaussian(mean=mean, covariance=covariance)
