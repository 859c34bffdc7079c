import unittest

import numpy as np
import scipy.stats
from numpy.testing import assert_allclose
from parameterized import parameterized

from pb_gmm.distribution import Gaussian, GaussianTrainer
from pb_gmm.testing.random_utils import positive_definite


class TestGaussian(unittest.TestCase):
    @parameterized.expand([(1,), (2,), (5,)])
    def test_pdf_matches_scipy(self, dimension):
        random_state = np.random.RandomState(dimension)
        mean = random_state.normal(size=dimension)
        covariance = positive_definite(dimension, dimension, random_state=random_state)
        x = random_state.normal(size=(20, dimension))

        model = Gaussian(mean=mean, covariance=covariance)
        reference = scipy.stats.multivariate_normal(mean, covariance)
        assert_allclose(model.log_pdf(x), reference.logpdf(x))
        assert_allclose(model.pdf(x), reference.pdf(x))
        assert_allclose(model.pdf(x[0]), reference.pdf(x[0]))

    def test_batched_components(self):
        random_state = np.random.RandomState(0)
        mean = random_state.normal(size=(3, 2))
        covariance = positive_definite(3, 2, 2, random_state=random_state)
        x = random_state.normal(size=(10, 2))

        log_pdf = Gaussian(mean=mean, covariance=covariance).log_pdf(x)
        self.assertEqual(log_pdf.shape, (10, 3))
        for k in range(3):
            assert_allclose(
                log_pdf[:, k],
                Gaussian(mean=mean[k], covariance=covariance[k]).log_pdf(x),
            )

    def test_zero_covariance(self):
        model = Gaussian(mean=np.ones(2), covariance=np.zeros((2, 2)))
        assert_allclose(
            model.pdf(np.array([[1., 1.], [4., -2.]])), [1 / (2 * np.pi)] * 2
        )

    def test_singular_covariance_uses_pseudo_inverse(self):
        model = Gaussian(mean=np.zeros(2), covariance=np.diag([2., 0.]))
        x = np.array([[1., 0.], [1., 3.], [-0.5, 7.]])
        # The second dimension has no variance, hence no influence.
        expected = (
            scipy.stats.norm(scale=np.sqrt(2.)).logpdf(x[:, 0])
            - 1 / 2 * np.log(2 * np.pi)
        )
        assert_allclose(model.log_pdf(x), expected)

    def test_singular_covariance_on_support_matches_scipy(self):
        covariance = np.array([[2., 2.], [2., 2.]])
        x = np.array([[0., 0.], [1., 1.], [-3., -3.]])
        model = Gaussian(mean=np.zeros(2), covariance=covariance)
        reference = scipy.stats.multivariate_normal(
            np.zeros(2), covariance, allow_singular=True
        )
        # Rank 1 in 2 dimensions, scipy normalizes with the rank.
        assert_allclose(
            model.log_pdf(x), reference.logpdf(x) - 1 / 2 * np.log(2 * np.pi)
        )

    def test_parameters_are_read_only_copies(self):
        mean = np.zeros(2)
        model = Gaussian(mean=mean, covariance=np.eye(2))
        mean[0] = 1.
        assert_allclose(model.mean, [0., 0.])
        for name in ['mean', 'covariance', 'precision_root']:
            self.assertFalse(getattr(model, name).flags.writeable, name)

    def test_shape_mismatch(self):
        with self.assertRaises(AssertionError):
            Gaussian(mean=np.zeros(2), covariance=np.eye(3))


class TestGaussianTrainer(unittest.TestCase):
    def setUp(self):
        self.x = np.random.RandomState(0).normal(size=(50, 3)) * [1., 2., 3.]

    def test_biased_diagonal(self):
        model = GaussianTrainer().fit(self.x)
        assert_allclose(model.mean, np.mean(self.x, axis=0))
        assert_allclose(model.covariance, np.diag(np.var(self.x, axis=0)))

    def test_independent_dimension(self):
        x = np.stack([self.x, 2 * self.x])
        model = GaussianTrainer().fit(x)
        self.assertEqual(model.mean.shape, (2, 3))
        self.assertEqual(model.covariance.shape, (2, 3, 3))
        assert_allclose(model.covariance[1], 4 * model.covariance[0])

    def test_identical_observations(self):
        model = GaussianTrainer().fit(np.ones((5, 2)))
        assert_allclose(model.covariance, np.zeros((2, 2)))
        assert_allclose(model.pdf(np.zeros(2)), 1 / (2 * np.pi))
