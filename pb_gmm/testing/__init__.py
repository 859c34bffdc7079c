from . import module_asserts
from . import random_utils
