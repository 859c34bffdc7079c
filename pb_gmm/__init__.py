from . import dataset
from . import distribution
