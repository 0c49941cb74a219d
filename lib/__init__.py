# pylint: disable=missing-module-docstring
