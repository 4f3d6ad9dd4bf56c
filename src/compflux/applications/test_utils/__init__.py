"""The module contains utility functions for testing.

Utility functions that are not specific to a single test module should be placed here.
Functions which are relevant also outside tests should go elsewhere.

"""

from . import derivative_testing, properties
