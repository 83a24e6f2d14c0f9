"""Task modules; importing the package registers the tasks."""
from . import payments  # noqa: F401

__all__ = ["payments"]
