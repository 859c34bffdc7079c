import numpy as np

# Minimum likelihood of any point under any component. Prevents a division by
# zero (and the logarithm of zero) for outliers.
EPS = 2. ** -52


def compute_soft_assignments(x, weight, gaussian, return_normalizer=False):
    """Responsibilities of the mixture components for the observations.

    This is the only place where responsibilities are calculated. Prediction
    and training both use it, hence they agree exactly.

    Args:
        x: Shape (..., D)
        weight: Mixture weights with shape (K,)
        gaussian: `Gaussian` with batch shape (K,)
        return_normalizer: Also return `sum_k EPS + weight_k * pdf_k(x)`,
            whose logarithm is the log-likelihood of `x`.

    Returns:
        Affiliation with shape (..., K), each entry in (0, 1].

    >>> from pb_gmm.distribution import Gaussian
    >>> gaussian = Gaussian(
    ...     mean=np.array([[-1.], [1.]]),
    ...     covariance=np.ones((2, 1, 1)),
    ... )
    >>> compute_soft_assignments(np.array([0.]), np.array([0.5, 0.5]), gaussian)
    array([0.5, 0.5])
    >>> outlier = np.array([1e3])  # pdf underflows for both components
    >>> compute_soft_assignments(outlier, np.array([0.5, 0.5]), gaussian)
    array([0.5, 0.5])
    """
    affiliation = EPS + weight * gaussian.pdf(x)
    normalizer = np.sum(affiliation, axis=-1, keepdims=True)
    affiliation /= normalizer
    if return_normalizer:
        return affiliation, normalizer[..., 0]
    else:
        return affiliation


def estimate_mixture_weight(affiliation_sum):
    """
    Estimates the mixture weight from the accumulated responsibilities.

    Args:
        affiliation_sum: Shape (..., K)

    Returns:
        Mixture weight with the same shape, sums to one along the last axis.

    >>> estimate_mixture_weight([1.5, 0.5])
    array([0.75, 0.25])
    """
    affiliation_sum = np.asarray(affiliation_sum, dtype=np.float64)
    return affiliation_sum / np.sum(affiliation_sum, axis=-1, keepdims=True)
