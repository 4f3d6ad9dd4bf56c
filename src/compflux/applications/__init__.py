"""Applications built on top of the flux evaluation. Currently only utilities for
testing."""

from . import test_utils
