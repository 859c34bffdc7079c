import functools
import operator
import warnings
from dataclasses import dataclass, replace
from typing import ClassVar, Optional

import numpy as np
from cached_property import cached_property
from sklearn.exceptions import ConvergenceWarning
from sklearn.utils import check_random_state

from pb_gmm.dataset import as_array, is_rdd, map_partitions, split
from pb_gmm.dataset import take_sample
from pb_gmm.distribution.gaussian import Gaussian, GaussianTrainer
from pb_gmm.distribution.mixture_model_utils import (
    compute_soft_assignments,
    estimate_mixture_weight,
)
from pb_gmm.distribution.utils import _ProbabilisticModel, _readonly_copy

__all__ = [
    'GaussianMixtureModel',
    'GaussianMixtureModelEM',
    'ExpectationSum',
    'sample_gmm',
]


def sample_gmm(
        size,
        weight,
        mean,
        covariance,
        return_label=False,
        random_state=None,
):
    weight = np.asarray(weight)
    mean = np.asarray(mean)
    covariance = np.asarray(covariance)
    assert weight.ndim == 1, weight
    assert isinstance(size, int), size
    assert covariance.ndim == 3, covariance.shape

    num_classes, = weight.shape

    D = mean.shape[-1]
    assert mean.shape == (num_classes, D), (mean.shape, num_classes, D)
    assert covariance.shape == (num_classes, D, D), (covariance.shape, num_classes, D)  # noqa

    random_state = check_random_state(random_state)
    labels = random_state.choice(range(num_classes), size=size, p=weight)

    x = np.zeros((size, D), dtype=np.float64)

    for l in range(num_classes):
        x[labels == l, :] = random_state.multivariate_normal(
            mean[l, :], covariance[l, :, :], size=(np.sum(labels == l),)
        )

    if return_label:
        return x, labels
    else:
        return x


def _apply_snapshot(function, snapshot, x):
    weight, gaussian = snapshot.value
    return function(np.asarray(x, dtype=np.float64), weight, gaussian)


def _hard_assignment(x, weight, gaussian):
    return np.argmax(compute_soft_assignments(x, weight, gaussian), axis=-1)


def _squared_distance_to_center(x, weight, gaussian):
    center = gaussian.mean[_hard_assignment(x, weight, gaussian)]
    return np.sum((x - center) ** 2, axis=-1)


def _log_likelihood(x, weight, gaussian):
    _, normalizer = compute_soft_assignments(
        x, weight, gaussian, return_normalizer=True
    )
    return np.log(normalizer)


@dataclass(frozen=True)
class GaussianMixtureModel(_ProbabilisticModel):
    """Mixture of K multivariate Gaussians.

    Points are drawn from component k with probability `weight[k]`. The
    parameters are copied on construction and stored read-only.

    >>> model = GaussianMixtureModel(
    ...     weight=[0.5, 0.5],
    ...     mean=[[-5.], [5.]],
    ...     covariance=[[[1.]], [[1.]]],
    ... )
    >>> model.k
    2
    >>> model.predict(np.array([[-4.], [6.]]))
    array([0, 1])
    >>> GaussianMixtureModel([np.nan], [[0.]], [[[1.]]])
    Traceback (most recent call last):
    ...
    AssertionError: weight contains NaN: [nan]
    """
    weight: np.array  # (K,)
    mean: np.array  # (K, D)
    covariance: np.array  # (K, D, D)

    def __post_init__(self):
        for name, ndim in [('weight', 1), ('mean', 2), ('covariance', 3)]:
            value = _readonly_copy(getattr(self, name), ndim)
            assert not np.any(np.isnan(value)), f'{name} contains NaN: {value}'
            object.__setattr__(self, name, value)

        K, D = self.mean.shape
        assert self.weight.shape == (K,), (self.weight.shape, self.mean.shape)
        assert self.covariance.shape == (K, D, D), (
            self.covariance.shape, self.mean.shape
        )

    @property
    def k(self):
        """Number of Gaussians in the mixture."""
        return self.weight.shape[0]

    @cached_property
    def gaussian(self):
        """All components as one batched `Gaussian` (decomposed once)."""
        return Gaussian(mean=self.mean, covariance=self.covariance)

    def _evaluate(self, points, function):
        if is_rdd(points):
            snapshot = points.context.broadcast((self.weight, self.gaussian))
            return points.map(
                functools.partial(_apply_snapshot, function, snapshot)
            )
        else:
            points = np.asarray(points, dtype=np.float64)
            return function(points, self.weight, self.gaussian)

    def predict_membership(self, points):
        """Soft assignment of each point to all mixture components.

        Args:
            points: Shape (N, D) or (D,), or an RDD of vectors.

        Returns:
            Shape (N, K) or (K,), or an RDD of (K,) arrays.
        """
        return self._evaluate(points, compute_soft_assignments)

    def predict(self, points):
        """Maps the points to their cluster indices."""
        return self._evaluate(points, _hard_assignment)

    def compute_cost(self, data):
        """Sum of squared distances of the points to their predicted mean.

        This is the k-means cost of the hard assignment.
        """
        cost = self._evaluate(data, _squared_distance_to_center)
        if is_rdd(data):
            return float(cost.aggregate(0., operator.add, operator.add))
        return float(np.sum(cost))

    def log_likelihood(self, data):
        """Log-likelihood with the same floor that is used in training.

        >>> model = GaussianMixtureModel([1.], [[0.]], [[[1.]]])
        >>> round(model.log_likelihood(np.zeros((2, 1))), 6)
        -1.837877
        """
        log_likelihood = self._evaluate(data, _log_likelihood)
        if is_rdd(data):
            return float(
                log_likelihood.aggregate(0., operator.add, operator.add)
            )
        return float(np.sum(log_likelihood))


@dataclass
class ExpectationSum:
    """Sufficient statistics of one E-step.

    `add` folds observations into the sums, `combine` merges two partial
    sums. Both only add, hence the result does not depend on the order of
    the observations or on how they are partitioned.
    """
    log_likelihood: float
    weight: np.array  # (K,)
    mean: np.array  # (K, D)
    covariance: np.array  # (K, D, D)

    @classmethod
    def zeros(cls, k, d):
        return cls(
            log_likelihood=0.,
            weight=np.zeros(k),
            mean=np.zeros((k, d)),
            covariance=np.zeros((k, d, d)),
        )

    def add(self, x, weight, gaussian):
        """

        Args:
            x: One observation with shape (D,) or a batch with shape (N, D)
            weight: Current mixture weights, shape (K,)
            gaussian: Current components, batch shape (K,)

        Returns:
            self

        """
        x = np.asarray(x, dtype=np.float64)
        affiliation, normalizer = compute_soft_assignments(
            x, weight, gaussian, return_normalizer=True
        )
        self.log_likelihood += float(np.sum(np.log(normalizer)))
        self.weight += np.einsum('...k->k', affiliation)
        self.mean += np.einsum('...k,...d->kd', affiliation, x)
        self.covariance += np.einsum('...k,...d,...D->kdD', affiliation, x, x)
        return self

    def combine(self, other):
        self.log_likelihood += other.log_likelihood
        self.weight += other.weight
        self.mean += other.mean
        self.covariance += other.covariance
        return self

    def maximize(self):
        """M-step: mixture weights and Gaussians from the sums.

        The covariance is the weighted second moment minus the outer product
        of the new mean. It is not regularized.
        """
        weight = estimate_mixture_weight(self.weight)
        mean = self.mean / self.weight[:, None]
        covariance = (
            self.covariance / self.weight[:, None, None]
            - np.einsum('kd,kD->kdD', mean, mean)
        )
        return weight, Gaussian(mean=mean, covariance=covariance)


def _expectation_step(snapshot, expectation_sum, x):
    weight, gaussian = snapshot.value
    return expectation_sum.add(x, weight, gaussian)


def _expectation_sum_of_partition(weight, gaussian, x):
    k, d = gaussian.mean.shape
    return ExpectationSum.zeros(k, d).add(x, weight, gaussian)


@dataclass(frozen=True)
class GaussianMixtureModelEM:
    """Expectation maximization for a Gaussian mixture model.

    Maximizes the log-likelihood of the data for a mixture of `k` Gaussians.
    Iterates until the log-likelihood changes by at most `convergence_tol`
    or until `max_iterations` iterations are done. The log-likelihood does
    not decrease, but the optimum may be local.

    Args:
        k: Number of Gaussians in the mixture.
        convergence_tol: Largest change of the log-likelihood at which
            convergence is considered to have occurred.
        max_iterations: Maximum number of EM iterations. At least one
            iteration is always done.
        initial_model: Starting point instead of the random initialization.
            Must have `k` components.
        seed: Seed for the random initialization. Drawn from numpy's global
            random state when None.
        num_partitions: Number of partitions of array input. Defaults to
            the number of jobs. Ignored for RDDs.
        n_jobs: Number of joblib jobs that fold the partitions of array
            input. Ignored for RDDs.

    The configuration is immutable. The `set_*` methods return a new,
    validated instance:

    >>> em = GaussianMixtureModelEM().set_k(3).set_max_iterations(10)
    >>> em.k, em.max_iterations, em.convergence_tol
    (3, 10, 0.01)
    >>> em.set_initial_model(GaussianMixtureModel([1.], [[0.]], [[[1.]]]))
    Traceback (most recent call last):
    ...
    ValueError: Initial model has mismatched cluster count: 1 != 3
    """
    k: int = 2
    convergence_tol: float = 0.01
    max_iterations: int = 100
    initial_model: Optional[GaussianMixtureModel] = None
    seed: Optional[int] = None
    num_partitions: Optional[int] = None
    n_jobs: Optional[int] = None

    # Number of random samples that are averaged for each initial mean.
    num_samples: ClassVar[int] = 5

    def __post_init__(self):
        if self.k < 1:
            raise ValueError(f'k has to be positive: {self.k}')
        if self.max_iterations < 1:
            raise ValueError(
                f'max_iterations has to be positive: {self.max_iterations}'
            )
        if not self.convergence_tol >= 0:
            raise ValueError(
                f'convergence_tol has to be non-negative: '
                f'{self.convergence_tol}'
            )
        if self.num_partitions is not None and self.num_partitions < 1:
            raise ValueError(
                f'num_partitions has to be positive: {self.num_partitions}'
            )
        if self.initial_model is not None and self.initial_model.k != self.k:
            raise ValueError(
                f'Initial model has mismatched cluster count: '
                f'{self.initial_model.k} != {self.k}'
            )

    def set_k(self, k):
        return replace(self, k=k)

    def set_max_iterations(self, max_iterations):
        return replace(self, max_iterations=max_iterations)

    def set_convergence_tol(self, convergence_tol):
        return replace(self, convergence_tol=convergence_tol)

    def set_initial_model(self, initial_model):
        return replace(self, initial_model=initial_model)

    def set_seed(self, seed):
        return replace(self, seed=seed)

    def _sample_seed(self):
        if self.seed is None:
            return int(check_random_state(None).randint(np.iinfo(np.int32).max))
        return self.seed

    def _initialize(self, samples, dimension):
        """Uniform weights, means and diagonal covariances of random groups.

        Args:
            samples: `k * num_samples` points, drawn with replacement in one
                draw. Each consecutive group of `num_samples` points gives
                the mean and the (biased) per-dimension variance of one
                component.
            dimension: D

        Returns:
            weight with shape (k,) and a `Gaussian` with batch shape (k,)
        """
        samples = np.reshape(
            np.asarray(samples, dtype=np.float64),
            (self.k, self.num_samples, dimension),
        )
        gaussian = GaussianTrainer().fit(samples)
        weight = np.full(self.k, 1 / self.k)
        weight.flags.writeable = False
        return weight, gaussian

    def _prepare_rdd(self, data):
        data = data.map(functools.partial(np.asarray, dtype=np.float64)).cache()
        dimension = len(data.first())

        def draw(num):
            return data.takeSample(True, num, self._sample_seed())

        def expectation(weight, gaussian):
            snapshot = data.context.broadcast((weight, gaussian))
            try:
                return data.aggregate(
                    ExpectationSum.zeros(self.k, dimension),
                    functools.partial(_expectation_step, snapshot),
                    ExpectationSum.combine,
                )
            finally:
                snapshot.unpersist()

        return dimension, draw, expectation

    def _prepare_array(self, data):
        x = as_array(data)
        if len(x) == 0:
            raise ValueError('Dataset is empty.')
        dimension = x.shape[-1]
        partitions = split(x, self.num_partitions, self.n_jobs)

        def draw(num):
            return take_sample(x, num, self._sample_seed())

        def expectation(weight, gaussian):
            # weight and gaussian are read-only, the workers share them.
            partial_sums = map_partitions(
                functools.partial(
                    _expectation_sum_of_partition, weight, gaussian
                ),
                partitions,
                n_jobs=self.n_jobs,
            )
            return functools.reduce(
                ExpectationSum.combine,
                partial_sums,
                ExpectationSum.zeros(self.k, dimension),
            )

        return dimension, draw, expectation

    def run(self, data, *, return_log_likelihood=False):
        """

        Args:
            data: `pyspark.RDD` of vectors, or an array with shape (N, D).
            return_log_likelihood: Also return the log-likelihood of every
                iteration.

        Returns:
            `GaussianMixtureModel` and, if requested, the log-likelihood
            history.

        """
        if is_rdd(data):
            dimension, draw, expectation = self._prepare_rdd(data)
        else:
            dimension, draw, expectation = self._prepare_array(data)

        if self.initial_model is not None:
            weight = self.initial_model.weight
            gaussian = self.initial_model.gaussian
        else:
            weight, gaussian = self._initialize(
                draw(self.k * self.num_samples), dimension
            )

        log_likelihood_history = []
        log_likelihood = -np.inf
        iteration = 0
        while True:
            expectation_sum = expectation(weight, gaussian)

            weight, gaussian = expectation_sum.maximize()
            weight.flags.writeable = False

            previous_log_likelihood = log_likelihood
            log_likelihood = expectation_sum.log_likelihood
            log_likelihood_history.append(log_likelihood)
            iteration += 1

            converged = (
                abs(log_likelihood - previous_log_likelihood)
                <= self.convergence_tol
            )
            if converged or iteration >= self.max_iterations:
                break

        if not converged:
            warnings.warn(
                f'EM did not converge within {self.max_iterations} '
                f'iterations. Last change of the log-likelihood: '
                f'{log_likelihood - previous_log_likelihood}',
                ConvergenceWarning,
            )

        model = GaussianMixtureModel(
            weight=weight,
            mean=gaussian.mean,
            covariance=gaussian.covariance,
        )
        if return_log_likelihood:
            return model, log_likelihood_history
        else:
            return model

    def fit_predict(self, data):
        """Fit a model. Then just return the cluster indices."""
        if not is_rdd(data):
            data = as_array(data)
        return self.run(data).predict(data)
