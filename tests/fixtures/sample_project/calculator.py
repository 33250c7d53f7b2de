"""A small calculator that reports division by zero with the wrong error."""

import math

from helpers import clamp


class DivisionByZero(Exception):
    """Raised when dividing by zero."""


class Calculator:
    def __init__(self):
        self.memory = 0

    def add(self, a, b):
        self.memory = a + b
        return self.memory

    def divide(self, a, b):
        # the zero check is missing
        return a / b

    def root(self, value):
        return math.sqrt(clamp(value, 0, 100))


def describe(value):
    return f"value={value}"
