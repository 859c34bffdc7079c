"""Rationale:

Code for each kind of distribution lives in its own file, e.g. `gmm.py`.

Each file contains at least one dataclass, e.g. `Gaussian`. It stores the
parameters and provides at least a predict (or pdf) function.

Trainers are configured once and do not keep state between runs.
`GaussianMixtureModelEM.run` works on arrays (partitioned and folded with
joblib) or on a `pyspark.RDD`, see `pb_gmm.dataset`.
"""
from .gaussian import Gaussian, GaussianTrainer
from .gmm import (
    GaussianMixtureModel,
    GaussianMixtureModelEM,
    ExpectationSum,
    sample_gmm,
)

from . import utils
from . import mixture_model_utils
